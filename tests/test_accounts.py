"""Tests for AccountService identity resolution and lifecycle updates."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.db.models.core import Account, StoredFile
from app.domain.models import AccountState
from app.services.accounts import AccountService
from app.services.exceptions import PersistenceFailure
from app.utils.units import MEGABYTE


@pytest.mark.asyncio
async def test_resolve_creates_account_with_free_tier(session, gateway_settings):
    service = AccountService(session, gateway_settings)

    account, is_new = await service.resolve("1001")

    assert is_new is True
    assert account.id is not None
    assert account.address == "1001"
    assert account.onboarded is False
    assert account.storage_used_bytes == 0
    assert account.storage_limit_bytes == 500 * MEGABYTE
    assert account.state == AccountState.NORMAL.value
    assert account.storage_prefix == f"accounts/{account.id}/"


@pytest.mark.asyncio
async def test_resolve_returns_existing_account(session, gateway_settings):
    service = AccountService(session, gateway_settings)
    first, _ = await service.resolve("1001")

    again, is_new = await service.resolve("1001")

    assert is_new is False
    assert again.id == first.id
    count = (await session.execute(select(func.count(Account.id)))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_resolve_recovers_from_concurrent_insert(session, gateway_settings, monkeypatch):
    session.add(Account(address="2002", storage_limit_bytes=10))
    await session.commit()

    service = AccountService(session, gateway_settings)
    original_lookup = service.get_by_address
    calls = {"count": 0}

    async def lookup_misses_once(address):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return await original_lookup(address)

    monkeypatch.setattr(service, "get_by_address", lookup_misses_once)

    account, is_new = await service.resolve("2002")

    assert is_new is False
    assert account.storage_limit_bytes == 10
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_set_state_and_mark_onboarded_persist(session, gateway_settings):
    service = AccountService(session, gateway_settings)
    account, _ = await service.resolve("3003")

    await service.mark_onboarded(account)
    await service.set_state(account, AccountState.AWAITING_CONFIRM)
    reloaded = await service.reload_for_update(account)

    assert reloaded.onboarded is True
    assert reloaded.awaiting_delete_confirmation is True


@pytest.mark.asyncio
async def test_delete_removes_account_and_files(session, gateway_settings):
    service = AccountService(session, gateway_settings)
    account, _ = await service.resolve("4004")
    session.add(
        StoredFile(
            uid="a" * 32,
            account_id=account.id,
            category="image",
            mime_type="image/jpeg",
            size_bytes=10,
            original_name="a.jpg",
            storage_key=f"accounts/{account.id}/image/{'a' * 32}.jpg",
            checksum="0" * 64,
        )
    )
    await session.commit()

    await service.delete(account)

    assert await service.get_by_address("4004") is None
    files = (await session.execute(select(func.count(StoredFile.id)))).scalar_one()
    assert files == 0


@pytest.mark.asyncio
async def test_reload_for_update_raises_when_account_is_gone(session, gateway_settings):
    service = AccountService(session, gateway_settings)
    account, _ = await service.resolve("5005")
    account_id = account.id
    await service.delete(account)

    ghost = Account(address="5005", storage_limit_bytes=0)
    ghost.id = account_id
    with pytest.raises(PersistenceFailure):
        await service.reload_for_update(ghost)
