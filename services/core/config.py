"""
Runtime Configuration

All settings come from environment variables and are read once at import.
Modules import the constants they need:

    from config import STEP_TIMEOUT_SECONDS, CREATION_REWARD_XP

Author: Goal Forge Core Team
"""
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# =============================================================================
# Storage
# =============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./goalforge.db")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# =============================================================================
# Logging / HTTP
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE")
LOG_JSON = _env_bool("LOG_JSON", False)
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]

# =============================================================================
# Board service (Trello)
# =============================================================================

TRELLO_API_BASE = os.getenv("TRELLO_API_BASE", "https://api.trello.com/1")
TRELLO_AUTHORIZE_URL = os.getenv("TRELLO_AUTHORIZE_URL", "https://trello.com/1/authorize")
TRELLO_API_KEY = os.getenv("TRELLO_API_KEY", "")
TRELLO_APP_NAME = os.getenv("TRELLO_APP_NAME", "Goal Forge")
TRELLO_RETURN_URL = os.getenv("TRELLO_RETURN_URL", "http://localhost:5173/oauth-callback")

# =============================================================================
# Planning collaborator (OpenAI-compatible)
# =============================================================================

OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
PLANNING_MODEL = os.getenv("PLANNING_MODEL", "gpt-4o-mini")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "dall-e-3")

# =============================================================================
# Credential ledger
# =============================================================================

CREDENTIAL_RPC_URL = os.getenv("CREDENTIAL_RPC_URL", "")
CREDENTIAL_CONTRACT_ADDRESS = os.getenv("CREDENTIAL_CONTRACT_ADDRESS", "")
CREDENTIAL_MINTER_KEY = os.getenv("CREDENTIAL_MINTER_KEY", "")
CREDENTIAL_METADATA_BASE_URI = os.getenv("CREDENTIAL_METADATA_BASE_URI", "https://goalforge.app/credentials")
CREDENTIAL_EXTERNAL_URL = os.getenv("CREDENTIAL_EXTERNAL_URL", "https://goalforge.app/goal")

# =============================================================================
# Notifications
# =============================================================================

NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL", "")
NOTIFICATION_OUTBOX_SIZE = int(os.getenv("NOTIFICATION_OUTBOX_SIZE", "50"))

# =============================================================================
# Saga execution policy
# =============================================================================

STEP_TIMEOUT_SECONDS = float(os.getenv("STEP_TIMEOUT_SECONDS", "30"))
RETRY_BACKOFF_SECONDS = float(os.getenv("RETRY_BACKOFF_SECONDS", "0.5"))

# =============================================================================
# Rewards
# =============================================================================

LEVEL_SIZE = int(os.getenv("LEVEL_SIZE", "100"))
CREATION_REWARD_XP = int(os.getenv("CREATION_REWARD_XP", "100"))
WEEK_COMPLETION_REWARD_XP = int(os.getenv("WEEK_COMPLETION_REWARD_XP", "100"))
COMPLETION_BONUS_XP = int(os.getenv("COMPLETION_BONUS_XP", "500"))
COMPLETION_THRESHOLD = float(os.getenv("COMPLETION_THRESHOLD", "0.8"))
REWARD_CACHE_TTL_SECONDS = int(os.getenv("REWARD_CACHE_TTL_SECONDS", str(7 * 24 * 3600)))
