"""
SQLAlchemy ORM Models Package.

- base: Base class, UUID primary key and timestamp mixins
- user: User
- project: Project, Bid
- message: Message, Attachment
"""

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, new_uuid, utcnow
from .user import User
from .project import Project, Bid
from .message import Message, Attachment

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "new_uuid",
    "utcnow",
    "User",
    "Project",
    "Bid",
    "Message",
    "Attachment",
]
