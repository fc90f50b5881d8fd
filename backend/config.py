# config.py — Runtime configuration for the task tracker engine
import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Default storage budget for one unit of work; callers may pass their own.
STORAGE_TIMEOUT_SECONDS = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "5.0"))

# Kanban ordering
POSITION_REINDEX_STEP = float(os.getenv("POSITION_REINDEX_STEP", "1000"))
POSITION_MAX_RETRIES = int(os.getenv("POSITION_MAX_RETRIES", "1"))

# Lost workspace-version swaps retried before a role mutation gives up
ROLE_MUTATION_MAX_RETRIES = int(os.getenv("ROLE_MUTATION_MAX_RETRIES", "1"))

# Collapse Forbidden / NotMember into a 404 at the HTTP boundary
CONCEAL_ACCESS_DENIALS = _flag("CONCEAL_ACCESS_DENIALS", "true")

INVITE_CODE_LENGTH = 10
MESSAGE_MAX_LENGTH = 1000
