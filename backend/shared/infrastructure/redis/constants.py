"""
Redis constants and configuration.
Centralizes TTLs and key prefixes for better visibility and management.
"""

from shared.config.constants import GLOBAL_SCOPE

# =============================================================================
# TTL (Time To Live) Constants (in seconds)
# =============================================================================

# Chat caching (defaults; settings can override per deployment)
CHAT_HISTORY_CACHE_TTL = 300  # 5 minutes
CHAT_PROJECT_USERS_CACHE_TTL = 60  # Online flags and unread counts change often
CHAT_USER_PROJECTS_CACHE_TTL = 300  # 5 minutes


# =============================================================================
# Key Prefixes
# =============================================================================

# All chat keys share the "chat:{scope}:{user_id}:" prefix so a single
# prefix invalidation clears every namespace for that conversation scope.
PREFIX_CHAT = "chat:"
CHAT_SCOPE_TEMPLATE = "chat:{scope}:{user_id}:"
CHAT_HISTORY_TEMPLATE = CHAT_SCOPE_TEMPLATE + "history:{other_user_id}:{page}:{limit}"
CHAT_PROJECT_USERS_TEMPLATE = CHAT_SCOPE_TEMPLATE + "project_users"
CHAT_USER_PROJECTS_TEMPLATE = "chat:" + GLOBAL_SCOPE + ":{user_id}:user_projects"


def chat_scope(project_id: str | None) -> str:
    """Cache scope for a project, or the global channel when there is none."""
    return project_id or GLOBAL_SCOPE


def get_chat_scope_prefix(project_id: str | None, user_id: str) -> str:
    """Prefix covering every cached chat entry for one user in one scope."""
    return CHAT_SCOPE_TEMPLATE.format(scope=chat_scope(project_id), user_id=user_id)


def get_chat_history_cache_key(
    project_id: str | None,
    user_id: str,
    other_user_id: str | None,
    page: int,
    limit: int,
) -> str:
    """Generate cache key for one page of message history."""
    return CHAT_HISTORY_TEMPLATE.format(
        scope=chat_scope(project_id),
        user_id=user_id,
        other_user_id=other_user_id or "all",
        page=page,
        limit=limit,
    )


def get_project_users_cache_key(project_id: str | None, user_id: str) -> str:
    """Generate cache key for the chat counterparts of a user in a project."""
    return CHAT_PROJECT_USERS_TEMPLATE.format(scope=chat_scope(project_id), user_id=user_id)


def get_user_projects_cache_key(user_id: str) -> str:
    """Generate cache key for the projects a user can chat in."""
    return CHAT_USER_PROJECTS_TEMPLATE.format(user_id=user_id)
