"""
Project and Bid Models.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import BidStatus, ProjectStatus
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from .user import User


class Project(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A job posted by a client."""

    __tablename__ = "projects"

    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    budget: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ProjectStatus.OPEN)
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    accepted_bid_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    client: Mapped["User"] = relationship(foreign_keys=[client_id])
    bids: Mapped[list["Bid"]] = relationship(back_populates="project")

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, title='{self.title}', status={self.status})>"


class Bid(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A freelancer's offer on a project."""

    __tablename__ = "bids"

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BidStatus.PENDING)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)

    __table_args__ = (
        Index("ix_bid_project_user", "project_id", "user_id"),
        Index("ix_bid_user", "user_id"),
    )

    user: Mapped["User"] = relationship(foreign_keys=[user_id])
    project: Mapped["Project"] = relationship(back_populates="bids")

    def __repr__(self) -> str:
        return f"<Bid(id={self.id}, project_id={self.project_id}, user_id={self.user_id})>"
