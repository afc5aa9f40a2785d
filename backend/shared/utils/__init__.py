"""
Utilities module: validators, schemas.
"""

from shared.utils.validators import is_valid_uuid, filter_valid_ids
from shared.utils.schemas import (
    AttachmentInput,
    AttachmentOutput,
    MessagePayload,
    HistoryPage,
    ChatCounterpart,
    ProjectSummary,
)

__all__ = [
    # validators
    "is_valid_uuid",
    "filter_valid_ids",
    # schemas
    "AttachmentInput",
    "AttachmentOutput",
    "MessagePayload",
    "HistoryPage",
    "ChatCounterpart",
    "ProjectSummary",
]
