import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 5000))
RELOAD = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")

# Comma separated; "*" allows every origin
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# Rooms whose lastAccessedAt is older than this are swept
RETENTION_DAYS = int(os.getenv("RETENTION_DAYS", 30))
# Matches the 14 minute keep-alive cadence; 0 disables the in-process sweep
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", 840))

MAX_CODE_LENGTH = int(os.getenv("MAX_CODE_LENGTH", 1_000_000))
MAX_ROOM_ID_LENGTH = 256
# Outbound events queued per connection before a non-reading peer is dropped
MAX_PENDING_EVENTS = int(os.getenv("MAX_PENDING_EVENTS", 64))
