"""SQLAlchemy models for accounts, stored files and rate windows."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.domain.models import AccountState
from app.utils.datetime import utc_now


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (UniqueConstraint("address", name="uq_accounts_address"),)

    address: Mapped[str] = mapped_column(String(64), nullable=False)
    onboarded: Mapped[bool] = mapped_column(default=False, nullable=False)
    storage_used_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    storage_limit_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    state: Mapped[str] = mapped_column(
        Enum("normal", "awaiting_confirm", "deleted", name="account_state"),
        default="normal",
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    files: Mapped[list["StoredFile"]] = relationship(
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def awaiting_delete_confirmation(self) -> bool:
        return self.state == AccountState.AWAITING_CONFIRM.value

    @property
    def storage_remaining_bytes(self) -> int:
        return max(0, self.storage_limit_bytes - self.storage_used_bytes)

    @property
    def storage_prefix(self) -> str:
        """Object-store prefix shared by every object this account owns."""

        return f"accounts/{self.id}/"


class StoredFile(Base):
    __tablename__ = "stored_files"
    __table_args__ = (
        UniqueConstraint("uid", name="uq_stored_files_uid"),
        UniqueConstraint("storage_key", name="uq_stored_files_storage_key"),
        Index("ix_stored_files_account_category", "account_id", "category"),
        Index("ix_stored_files_account_created", "account_id", "created_at"),
    )

    uid: Mapped[str] = mapped_column(String(32), nullable=False)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[str] = mapped_column(
        Enum("image", "video", "audio", "document", name="media_category"),
        nullable=False,
    )
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    account: Mapped[Account] = relationship(back_populates="files")


class RateWindow(Base):
    """Externally backed admission window, one row per sender address."""

    __tablename__ = "rate_windows"
    __table_args__ = (UniqueConstraint("address", name="uq_rate_windows_address"),)

    address: Mapped[str] = mapped_column(String(64), nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


__all__ = [
    "Account",
    "RateWindow",
    "StoredFile",
]
