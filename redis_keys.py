REDIS_CONNECTIONS_KEY = "sse:connections" # set of live connection IDs
REDIS_CONN_KEY = "sse:connection:{connection_id}" # connection id - connection metadata hash
REDIS_QUEUE_KEY = "sse:queue:{connection_id}" # connection id - pending events list
REDIS_WAKEUP_CHANNEL = "sse:wakeup" # pub/sub channel name - connection ids with new events
REDIS_ACTIVE_USERS_KEY = "active_users" # set of user IDs with a live connection

REDIS_USER_KEY = "user:{user_id}" # user id - profile hash
REDIS_USERS_KEY = "users" # set of all user IDs
REDIS_USER_FORUMS_KEY = "user:{user_id}:forums" # user id - set of joined forum IDs
REDIS_USER_SESSION_KEY = "user:{user_id}:session" # user id - sign-in session hash
REDIS_USER_LAST_MESSAGE_KEY = "user:{user_id}:last_message" # user id - send rate limit marker
REDIS_AUTH_RATE_KEY = "rate_limit:auth:{client}" # client host - request counter

REDIS_FORUM_KEY = "forum:{forum_id}" # forum id - forum hash
REDIS_FORUMS_KEY = "forums" # set of all forum IDs
REDIS_PARTICIPANTS_KEY = "forum:{forum_id}:participants" # forum id - set of user IDs
REDIS_FORUM_MESSAGES_KEY = "forum:{forum_id}:messages" # forum id - message IDs, newest first

REDIS_MESSAGE_KEY = "message:{message_id}" # message id - message hash
REDIS_TYPING_KEY = "typing:{forum_id}" # forum id - hash of user id to typing entry

# **Example `sse:connection:{id}` hash fields**
# - `user_id` = owning user
# - `connected_at` = ISO timestamp
# - `last_heartbeat` = ISO timestamp, refreshed every heartbeat
# - `user_agent` = client user agent or "unknown"

# **Example `typing:{forum_id}` hash fields**
# - `<user_id>` = {"display_name": "...", "expires_at": unix seconds}
