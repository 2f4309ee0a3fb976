"""Tests for the per-attachment ingestion pipeline."""

from __future__ import annotations

import hashlib

import pytest
from hypothesis import given
from hypothesis import strategies as st
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from app.db.models.core import Account, StoredFile
from app.domain.models import Attachment, IngestOutcome, MediaCategory
from app.services.accounts import AccountService
from app.services.exceptions import DownloadFailed, PersistenceFailure
from app.services.ingestion import MediaIngestionPipeline, build_storage_key, fits_quota
from app.utils.units import MEGABYTE


def _pipeline(session, store, downloader, locks, settings, i18n) -> MediaIngestionPipeline:
    return MediaIngestionPipeline(
        session,
        store=store,
        downloader=downloader,
        locks=locks,
        settings=settings,
        i18n=i18n,
    )


async def _account(session, settings, address="100") -> Account:
    account, _ = await AccountService(session, settings).resolve(address)
    return account


@given(
    used=st.integers(min_value=0, max_value=10**12),
    limit=st.integers(min_value=0, max_value=10**12),
    size=st.integers(min_value=0, max_value=10**12),
)
def test_fits_quota_matches_definition(used, limit, size):
    assert fits_quota(used, limit, size) is (used + size <= limit)


def test_storage_key_layout():
    assert build_storage_key(42, MediaCategory.IMAGE, "u1", "jpg") == "accounts/42/image/u1.jpg"


@pytest.mark.asyncio
async def test_ten_megabyte_file_is_stored(session, store, downloader, locks, gateway_settings, i18n):
    account = await _account(session, gateway_settings)
    data = b"\x00" * (10 * MEGABYTE)
    downloader.payloads["file-1"] = data
    pipeline = _pipeline(session, store, downloader, locks, gateway_settings, i18n)

    result = await pipeline.ingest(
        account, Attachment(locator="file-1", mime_type="application/pdf", filename="report.pdf")
    )

    assert result.outcome is IngestOutcome.STORED
    assert "report.pdf" in result.reply
    assert "10240.0 KB" in result.reply
    assert "10.0 MB / 500 MB" in result.reply
    assert result.storage_key.startswith(f"accounts/{account.id}/document/")
    assert result.storage_key.endswith(".pdf")
    assert store.objects[result.storage_key] == data

    stored = (await session.execute(select(StoredFile))).scalar_one()
    assert stored.size_bytes == 10 * MEGABYTE
    assert stored.category == "document"
    assert stored.checksum == hashlib.sha256(data).hexdigest()
    assert stored.original_name == "report.pdf"
    assert account.storage_used_bytes == 10 * MEGABYTE


@pytest.mark.asyncio
async def test_sequential_uploads_stop_at_quota(session, store, downloader, locks, gateway_settings, i18n):
    settings = gateway_settings.model_copy(
        update={"storage": gateway_settings.storage.model_copy(update={"free_tier_bytes": 25})}
    )
    account = await _account(session, settings)
    downloader.payloads.update({"a": b"x" * 10, "b": b"y" * 10, "c": b"z" * 10})
    pipeline = _pipeline(session, store, downloader, locks, settings, i18n)

    outcomes = [
        (await pipeline.ingest(account, Attachment(locator=locator, mime_type="image/png"))).outcome
        for locator in ("a", "b", "c")
    ]

    assert outcomes == [IngestOutcome.STORED, IngestOutcome.STORED, IngestOutcome.QUOTA_EXCEEDED]
    assert account.storage_used_bytes == 20
    assert len(store.objects) == 2
    rows = (await session.execute(select(StoredFile))).scalars().all()
    assert sum(row.size_bytes for row in rows) == account.storage_used_bytes


@pytest.mark.asyncio
async def test_quota_exceeded_skips_upload(session, store, downloader, locks, gateway_settings, i18n):
    account = await _account(session, gateway_settings)
    account.storage_used_bytes = account.storage_limit_bytes - 5
    await session.commit()
    downloader.payloads["big"] = b"0123456789"
    pipeline = _pipeline(session, store, downloader, locks, gateway_settings, i18n)

    result = await pipeline.ingest(account, Attachment(locator="big", mime_type="video/mp4"))

    assert result.outcome is IngestOutcome.QUOTA_EXCEEDED
    assert "Storage full" in result.reply
    assert "upgrade" in result.reply
    assert store.objects == {}


@pytest.mark.asyncio
async def test_upload_failure_leaves_no_record(session, store, downloader, locks, gateway_settings, i18n):
    account = await _account(session, gateway_settings)
    downloader.payloads["a"] = b"abc"
    store.fail_uploads = True
    pipeline = _pipeline(session, store, downloader, locks, gateway_settings, i18n)

    result = await pipeline.ingest(account, Attachment(locator="a", mime_type="audio/ogg"))

    assert result.outcome is IngestOutcome.FAILED
    assert (await session.execute(select(StoredFile))).first() is None
    assert account.storage_used_bytes == 0


@pytest.mark.asyncio
async def test_download_failure_propagates(session, store, downloader, locks, gateway_settings, i18n):
    account = await _account(session, gateway_settings)
    pipeline = _pipeline(session, store, downloader, locks, gateway_settings, i18n)

    with pytest.raises(DownloadFailed):
        await pipeline.ingest(account, Attachment(locator="missing"))
    assert store.objects == {}


@pytest.mark.asyncio
async def test_space_taken_during_upload_is_rechecked(
    session, store, downloader, locks, gateway_settings, i18n
):
    account = await _account(session, gateway_settings)
    account_id = account.id
    limit = account.storage_limit_bytes
    downloader.payloads["a"] = b"x" * 100
    original_upload = store.upload

    async def upload_racing_another_ingest(key, data, mime_type, *, checksum=None):
        await original_upload(key, data, mime_type, checksum=checksum)
        await session.execute(
            update(Account).where(Account.id == account_id).values(storage_used_bytes=limit - 50)
        )
        await session.commit()

    store.upload = upload_racing_another_ingest
    pipeline = _pipeline(session, store, downloader, locks, gateway_settings, i18n)

    result = await pipeline.ingest(account, Attachment(locator="a", mime_type="image/gif"))

    assert result.outcome is IngestOutcome.QUOTA_EXCEEDED
    assert store.objects == {}
    assert len(store.deleted_keys) == 1
    assert (await session.execute(select(StoredFile))).first() is None


@pytest.mark.asyncio
async def test_finalize_failure_compensates_upload(
    session, store, downloader, locks, gateway_settings, i18n, monkeypatch
):
    account = await _account(session, gateway_settings)
    downloader.payloads["a"] = b"payload"
    original_upload = store.upload
    original_commit = session.commit
    state = {"fail_next_commit": False}

    async def upload_then_arm(key, data, mime_type, *, checksum=None):
        await original_upload(key, data, mime_type, checksum=checksum)
        state["fail_next_commit"] = True

    async def flaky_commit():
        if state["fail_next_commit"]:
            state["fail_next_commit"] = False
            raise OperationalError("COMMIT", {}, Exception("database went away"))
        await original_commit()

    store.upload = upload_then_arm
    monkeypatch.setattr(session, "commit", flaky_commit)
    pipeline = _pipeline(session, store, downloader, locks, gateway_settings, i18n)

    with pytest.raises(PersistenceFailure):
        await pipeline.ingest(account, Attachment(locator="a", mime_type="text/plain"))

    assert store.objects == {}
    assert len(store.deleted_keys) == 1
    assert (await session.execute(select(StoredFile))).first() is None


@pytest.mark.asyncio
async def test_missing_filename_uses_generated_name(session, store, downloader, locks, gateway_settings, i18n):
    account = await _account(session, gateway_settings)
    downloader.payloads["p"] = b"jpeg-bytes"
    pipeline = _pipeline(session, store, downloader, locks, gateway_settings, i18n)

    result = await pipeline.ingest(account, Attachment(locator="p", mime_type="image/jpeg"))

    stored = (await session.execute(select(StoredFile))).scalar_one()
    assert stored.original_name == f"{stored.uid}.jpg"
    assert result.storage_key == f"accounts/{account.id}/image/{stored.uid}.jpg"
