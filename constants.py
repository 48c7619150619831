import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

if REDIS_PASSWORD:
    REDIS_URL = os.getenv("REDIS_URL", f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}")
else:
    REDIS_URL = os.getenv("REDIS_URL", f"redis://{REDIS_HOST}:{REDIS_PORT}")

# Connection session cadence
HEARTBEAT_INTERVAL_SECONDS = float(os.getenv("HEARTBEAT_INTERVAL_SECONDS", 30))
DRAIN_INTERVAL_SECONDS = float(os.getenv("DRAIN_INTERVAL_SECONDS", 0.1))
MAX_SESSION_SECONDS = float(os.getenv("MAX_SESSION_SECONDS", 900))

# Expiry of realtime keys; metadata must outlive several heartbeats
CONNECTION_TTL_SECONDS = int(os.getenv("CONNECTION_TTL_SECONDS", 3600))
QUEUE_TTL_SECONDS = int(os.getenv("QUEUE_TTL_SECONDS", 1800))
TYPING_TTL_SECONDS = int(os.getenv("TYPING_TTL_SECONDS", 5))
REGISTRY_SWEEP_SECONDS = float(os.getenv("REGISTRY_SWEEP_SECONDS", 60))

# Forum content limits
MESSAGE_HISTORY_LIMIT = int(os.getenv("MESSAGE_HISTORY_LIMIT", 200))
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", 1000))
MESSAGE_RATE_LIMIT_SECONDS = int(os.getenv("MESSAGE_RATE_LIMIT_SECONDS", 2))
AUTH_RATE_LIMIT = int(os.getenv("AUTH_RATE_LIMIT", 10))
AUTH_RATE_WINDOW_SECONDS = int(os.getenv("AUTH_RATE_WINDOW_SECONDS", 60))
USER_SESSION_TTL_SECONDS = int(os.getenv("USER_SESSION_TTL_SECONDS", 86400))
