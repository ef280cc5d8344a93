import uvicorn

from app import app
from constants import HOST, PORT
from logging_config import get_logger

logger = get_logger(__name__)


def main():
    # app.py configures logging from LOG_LEVEL / LOG_FILE on import
    logger.info(f"Starting CallRelay server on {HOST}:{PORT}")
    # One worker: rooms and connections live in this process only
    uvicorn.run(app, host=HOST, port=PORT, workers=1, log_config=None)


if __name__ == "__main__":
    main()
