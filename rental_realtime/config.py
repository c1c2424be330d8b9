# ============================================
#     Rental Realtime — Global Configuration
# ============================================

import os

# =========================================
#   ENVIRONMENT
# =========================================
# Expected values: "dev", "test", "prod"
ENV = os.getenv("ENV", "dev").lower()

IS_PROD = ENV == "prod"


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in ("1", "true", "yes", "on")


# =========================================
#   PATHS — SINGLE SOURCE OF TRUTH (PERSISTENCE)
# =========================================
# Override with RENTAL_RT_DATA_DIR=/custom/path
# In dev, we default to a local folder inside the repo: ./var/data

# Project root = one level above /rental_realtime
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

DATA_DIR = (
    os.getenv("RENTAL_RT_DATA_DIR")
    or ("/var/data" if IS_PROD else os.path.join(PROJECT_ROOT, "var", "data"))
)

# Logs persistence
LOG_DIR = os.getenv("RENTAL_RT_LOG_DIR", os.path.join(DATA_DIR, "logs"))
DEFAULT_LOG_FILE = os.path.join(LOG_DIR, "rental_realtime.log")
LOG_FILE = os.getenv("RENTAL_RT_LOG_FILE", DEFAULT_LOG_FILE)

os.makedirs(LOG_DIR, exist_ok=True)

# =========================================
#   CONNECTIONS
# =========================================
DEFAULT_USER_NAME = "User"

# Origins allowed by the Socket.IO server ("*" = any)
CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "*")

# eventlet / threading; empty = auto-detect (eventlet when installed)
SOCKETIO_ASYNC_MODE = os.getenv("SOCKETIO_ASYNC_MODE") or None

# Subscribe every new connection to the conversations the user belongs to
AUTO_JOIN_CONVERSATIONS = _env_flag("AUTO_JOIN_CONVERSATIONS", True)

# =========================================
#   TYPING INDICATORS
# =========================================
TYPING_VISIBLE_SECONDS = float(os.getenv("TYPING_VISIBLE_SECONDS", "5"))
TYPING_STALE_SECONDS = float(os.getenv("TYPING_STALE_SECONDS", "10"))
CLEANUP_INTERVAL_SECONDS = float(os.getenv("CLEANUP_INTERVAL_SECONDS", "30"))
START_CLEANUP_TASK = _env_flag("START_CLEANUP_TASK", True)

# =========================================
#   MESSAGES
# =========================================
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "200"))   # Max messages kept per conversation
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "4000"))

# At-rest encryption of message content (Fernet).
# Empty = messages stored in clear text.
MESSAGE_SECRET_KEY = os.getenv("MESSAGE_SECRET_KEY", "")

# =========================================
#   AUTHORIZATION
# =========================================
# Conversation joins are checked against the conversation directory.
# In dev, joins are open for convenience.
ENFORCE_CONVERSATION_ACL = _env_flag("ENFORCE_CONVERSATION_ACL", IS_PROD)

# Token verification endpoint. Must answer {"valid": true, "userId": "..."}.
TOKEN_VERIFY_URL = os.getenv("TOKEN_VERIFY_URL", "")
TOKEN_VERIFY_TIMEOUT = float(os.getenv("TOKEN_VERIFY_TIMEOUT", "8"))

# In production, a supplied token MUST be verified.
# In dev, a missing TOKEN_VERIFY_URL bypasses verification.
REQUIRE_TOKEN_VERIFICATION = _env_flag("REQUIRE_TOKEN_VERIFICATION", IS_PROD)
