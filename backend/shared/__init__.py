"""
Shared module for code used by the chat gateway and the marketplace domain.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging
  - constants.py: Roles, MessageStatus, limits

- shared.infrastructure: Database, Redis and background work
  - db.py: SQLAlchemy sessions, safe_commit()
  - redis/: Connection pool, cache key naming and TTLs
  - cache/: History cache backends (Redis, in-memory)
  - background.py: Fire-and-forget task queue

- shared.utils: Utilities
  - validators.py: Identifier validation
  - schemas.py: Chat wire payloads (Pydantic)

IMPORT EXAMPLES:
    from shared.infrastructure.db import get_db_context, safe_commit
    from shared.config.settings import settings
    from shared.config.constants import MessageStatus, Roles
    from shared.utils.schemas import MessagePayload
"""

# No re-exports; import from the canonical paths documented above.
