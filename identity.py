from typing import Optional

from fastapi import HTTPException
from starlette.requests import HTTPConnection

from connections import ConnectionManager
from constants import USER_ID_HEADER, USER_ID_QUERY_PARAM
from errors import ValidationError


def resolve_user_id(connection: HTTPConnection) -> Optional[str]:
    """User id established by the upstream auth layer for a request or websocket.

    The auth layer forwards it as the X-User-Id header; browsers cannot set
    headers on a websocket handshake, so the user_id query parameter is
    accepted as well.
    """
    user_id = connection.headers.get(USER_ID_HEADER) or connection.query_params.get(USER_ID_QUERY_PARAM)
    if user_id:
        user_id = user_id.strip()
    return user_id or None


def require_user_id(connection: HTTPConnection) -> str:
    """FastAPI dependency for HTTP routes that need a caller identity."""
    user_id = resolve_user_id(connection)
    if not user_id:
        raise HTTPException(status_code=401, detail="User identity required")
    return user_id


def claim_user_id(connections: ConnectionManager, connection_id: str, claimed_user_id: Optional[str]) -> str:
    """Settle which user an event on a connection acts as.

    An omitted id falls back to the connection's user. A connection with no
    user yet is bound to the claimed one, so a later transport close can be
    mapped back to it.
    """
    bound_user_id = connections.user_of(connection_id)
    if not claimed_user_id:
        if not bound_user_id:
            raise ValidationError("userId is required for an anonymous connection")
        return bound_user_id
    if bound_user_id and bound_user_id != claimed_user_id:
        raise ValidationError(f"Connection is bound to a different user than {claimed_user_id}")
    if not bound_user_id:
        connections.bind_user(connection_id, claimed_user_id)
    return claimed_user_id
