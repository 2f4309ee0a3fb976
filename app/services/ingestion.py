"""Back up one attachment: download, quota check, upload, record, account."""

from __future__ import annotations

import hashlib
import posixpath
import uuid
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import GatewaySettings, get_settings
from app.db.models.core import Account, StoredFile
from app.domain.models import Attachment, IngestOutcome, IngestResult, MediaCategory
from app.i18n import I18nService, get_i18n
from app.logging import logger
from app.services.accounts import AccountService
from app.services.downloader import MediaDownloader
from app.services.exceptions import PersistenceFailure, StoreUnavailable
from app.services.media_types import category_for, extension_for
from app.utils.locks import KeyedLock
from app.utils.units import format_kb, format_mb

ORIGINAL_NAME_MAX_LENGTH = 255


class ObjectStore(Protocol):
    async def upload(self, key: str, data: bytes, mime_type: str, *, checksum: str | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


def fits_quota(used_bytes: int, limit_bytes: int, size_bytes: int) -> bool:
    return used_bytes + size_bytes <= limit_bytes


def build_storage_key(account_id: int, category: MediaCategory, uid: str, extension: str) -> str:
    return f"accounts/{account_id}/{category.value}/{uid}.{extension}"


def content_checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _display_name(filename: str | None, fallback: str) -> str:
    if not filename:
        return fallback
    name = posixpath.basename(filename.replace("\\", "/")).strip()
    return name[:ORIGINAL_NAME_MAX_LENGTH] or fallback


class MediaIngestionPipeline:
    """Runs per attachment within one event's database session.

    The upload happens outside the per-account lock; only the quota pre-check
    and the final "insert record + add usage" transaction hold it. The final
    step re-checks the quota because a concurrent upload for the same account
    may have used the space in the meantime.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        store: ObjectStore,
        downloader: MediaDownloader,
        locks: KeyedLock,
        settings: GatewaySettings | None = None,
        i18n: I18nService | None = None,
    ) -> None:
        self.session = session
        self.store = store
        self.downloader = downloader
        self.locks = locks
        self.settings = settings or get_settings()
        self.i18n = i18n or get_i18n(self.settings.default_language)
        self.accounts = AccountService(session, self.settings)

    async def ingest(self, account: Account, attachment: Attachment) -> IngestResult:
        # DownloadFailed propagates; the caller reports it for this attachment only.
        data = await self.downloader.download(attachment.locator)
        size = len(data)

        async with self.locks.hold(account.id):
            account = await self.accounts.reload_for_update(account)
            fits = fits_quota(account.storage_used_bytes, account.storage_limit_bytes, size)
            await self.session.commit()
        if not fits:
            logger.info(
                "ingest_quota_exceeded",
                account_id=account.id,
                size_bytes=size,
                storage_used_bytes=account.storage_used_bytes,
            )
            return self._quota_result(account)

        category = category_for(attachment.mime_type)
        uid = uuid.uuid4().hex
        extension = extension_for(attachment.mime_type)
        storage_key = build_storage_key(account.id, category, uid, extension)
        checksum = content_checksum(data)
        original_name = _display_name(attachment.filename, f"{uid}.{extension}")

        try:
            await self.store.upload(storage_key, data, attachment.mime_type, checksum=checksum)
        except StoreUnavailable as exc:
            logger.warning(
                "ingest_upload_failed",
                account_id=account.id,
                storage_key=storage_key,
                error=str(exc),
            )
            return IngestResult(
                outcome=IngestOutcome.FAILED,
                reply=self.i18n.gettext("ingest.upload_failed"),
                size_bytes=size,
            )

        async with self.locks.hold(account.id):
            try:
                account = await self.accounts.reload_for_update(account)
                if not fits_quota(account.storage_used_bytes, account.storage_limit_bytes, size):
                    await self.session.commit()
                    await self._discard(storage_key)
                    logger.info("ingest_quota_lost_to_concurrent_upload", account_id=account.id)
                    return self._quota_result(account)

                self.session.add(
                    StoredFile(
                        uid=uid,
                        account_id=account.id,
                        category=category.value,
                        mime_type=attachment.mime_type,
                        size_bytes=size,
                        original_name=original_name,
                        storage_key=storage_key,
                        checksum=checksum,
                    )
                )
                account.storage_used_bytes += size
                await self.session.commit()
            except PersistenceFailure:
                # Account was deleted while the upload was in flight.
                await self.session.rollback()
                await self._discard(storage_key)
                raise
            except SQLAlchemyError as exc:
                await self.session.rollback()
                await self._discard(storage_key)
                raise PersistenceFailure(f"Could not record {storage_key}") from exc

        logger.info(
            "ingest_stored",
            account_id=account.id,
            storage_key=storage_key,
            size_bytes=size,
            category=category.value,
            checksum=checksum,
        )
        return IngestResult(
            outcome=IngestOutcome.STORED,
            reply=self.i18n.gettext(
                "ingest.stored",
                filename=original_name,
                size_kb=format_kb(size),
                used_mb=format_mb(account.storage_used_bytes),
                limit_mb=format_mb(account.storage_limit_bytes, decimals=0),
            ),
            storage_key=storage_key,
            size_bytes=size,
        )

    def _quota_result(self, account: Account) -> IngestResult:
        return IngestResult(
            outcome=IngestOutcome.QUOTA_EXCEEDED,
            reply=self.i18n.gettext(
                "ingest.quota_exceeded",
                used_mb=format_mb(account.storage_used_bytes),
                limit_mb=format_mb(account.storage_limit_bytes, decimals=0),
            ),
        )

    async def _discard(self, storage_key: str) -> None:
        """Best-effort removal of an object that never got a metadata record."""

        try:
            await self.store.delete(storage_key)
        except StoreUnavailable as exc:
            # Orphan stays under the account prefix and goes with account deletion.
            logger.warning("ingest_orphan_left", storage_key=storage_key, error=str(exc))


__all__ = [
    "MediaIngestionPipeline",
    "ObjectStore",
    "build_storage_key",
    "content_checksum",
    "fits_quota",
]
