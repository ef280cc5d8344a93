REDIS_CONVERSATION_KEY = "conversation:{conversation_id}"  # hash - conversation record
REDIS_CONVERSATION_PAIR_KEY = "conversation:pair:{low_length}:{low}:{high}"  # string - conversation id for an unordered pair
REDIS_CONVERSATION_MESSAGES_KEY = "conversation:{conversation_id}:messages"  # zset - message ids scored by created_at
REDIS_USER_CONVERSATIONS_KEY = "user:{user_id}:conversations"  # zset - conversation ids scored by last_message_at
REDIS_MESSAGE_KEY = "message:{message_id}"  # hash - message record

# **Example `conversation:{id}` hash fields**
# - `id` = `{conversationId}`
# - `user_one_id`, `user_two_id` = user ids, user one is the first sender
# - `last_message` = text of the latest message
# - `last_message_at`, `created_at` = ISO timestamps (UTC)
# - `unread_count_for_user_one`, `unread_count_for_user_two` = integers, incremented with HINCRBY


def conversation_pair_key(user_a: str, user_b: str) -> str:
    """Key shared by both orderings of a user pair.

    User ids may contain the separator, so the first id is length-prefixed.
    """
    low, high = sorted((user_a, user_b))
    return REDIS_CONVERSATION_PAIR_KEY.format(low_length=len(low), low=low, high=high)
