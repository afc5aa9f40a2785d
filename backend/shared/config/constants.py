"""
Centralized constants for the chat backend.
Avoids magic strings for roles and statuses.

Usage:
    from shared.config.constants import Roles, MessageStatus

    if user.role in Roles.PROJECT_OWNERS:
        ...

    if message.status == MessageStatus.READ:
        ...
"""

from typing import Final


# =============================================================================
# User Roles
# =============================================================================


class Roles:
    """Marketplace user role constants."""

    CLIENT: Final[str] = "CLIENT"
    FREELANCER: Final[str] = "FREELANCER"
    BOTH: Final[str] = "BOTH"

    ALL: Final[list[str]] = [CLIENT, FREELANCER, BOTH]

    # Roles that own projects and chat with every bidder
    PROJECT_OWNERS: Final[frozenset[str]] = frozenset({CLIENT, BOTH})


# =============================================================================
# Entity Status Constants
# =============================================================================


class MessageStatus:
    """
    Chat message delivery status.

    Status only moves forward: SENT -> DELIVERED -> READ.
    """

    SENT: Final[str] = "SENT"
    DELIVERED: Final[str] = "DELIVERED"
    READ: Final[str] = "READ"

    ALL: Final[list[str]] = [SENT, DELIVERED, READ]

    RANK: Final[dict[str, int]] = {SENT: 0, DELIVERED: 1, READ: 2}

    @classmethod
    def is_upgrade(cls, current: str, target: str) -> bool:
        """True if moving from current to target advances the status."""
        return cls.RANK[target] > cls.RANK[current]


class ProjectStatus:
    """Project lifecycle status constants."""

    OPEN: Final[str] = "OPEN"
    IN_PROGRESS: Final[str] = "IN_PROGRESS"
    COMPLETED: Final[str] = "COMPLETED"
    CANCELLED: Final[str] = "CANCELLED"

    ALL: Final[list[str]] = [OPEN, IN_PROGRESS, COMPLETED, CANCELLED]


class BidStatus:
    """Bid status constants."""

    PENDING: Final[str] = "PENDING"
    ACCEPTED: Final[str] = "ACCEPTED"
    REJECTED: Final[str] = "REJECTED"

    ALL: Final[list[str]] = [PENDING, ACCEPTED, REJECTED]


# =============================================================================
# Chat Limits
# =============================================================================


class Limits:
    """Limits for chat queries and payloads."""

    DEFAULT_HISTORY_PAGE_SIZE: Final[int] = 50
    MAX_CONTENT_LENGTH: Final[int] = 10_000
    MAX_ATTACHMENTS_PER_MESSAGE: Final[int] = 20
    MAX_MARK_READ_IDS: Final[int] = 500


# Sentinel url for attachments whose upload has not finished
UPLOADING_SENTINEL: Final[str] = "uploading"

# Scope used in cache keys when a message has no project
GLOBAL_SCOPE: Final[str] = "global"
