"""Account lookup, creation and lifecycle updates."""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import GatewaySettings, get_settings
from app.db.models.core import Account, StoredFile
from app.domain.models import AccountState
from app.logging import logger
from app.services.exceptions import PersistenceFailure


class AccountService:
    def __init__(self, session: AsyncSession, settings: GatewaySettings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    async def get_by_address(self, address: str) -> Account | None:
        stmt = select(Account).where(Account.address == address)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def resolve(self, address: str) -> tuple[Account, bool]:
        """Return the account for ``address``, creating it on first contact."""

        account = await self.get_by_address(address)
        if account is not None:
            return account, False

        account = Account(
            address=address,
            onboarded=False,
            storage_used_bytes=0,
            storage_limit_bytes=self.settings.storage.free_tier_bytes,
            state=AccountState.NORMAL.value,
        )
        self.session.add(account)
        try:
            await self.session.commit()
        except IntegrityError:
            # A concurrent first message from the same address won the insert.
            await self.session.rollback()
            existing = await self.get_by_address(address)
            if existing is None:
                raise
            return existing, False

        logger.info(
            "account_created",
            account_id=account.id,
            address=address,
            storage_limit_bytes=account.storage_limit_bytes,
        )
        return account, True

    async def reload_for_update(self, account: Account) -> Account:
        """Re-read ``account`` in place, row-locked until the next commit/rollback."""

        stmt = (
            select(Account)
            .where(Account.id == account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        fresh = result.scalar_one_or_none()
        if fresh is None:
            raise PersistenceFailure(f"Account {account.id} no longer exists")
        return fresh

    async def mark_onboarded(self, account: Account) -> None:
        account.onboarded = True
        await self.session.commit()

    async def set_state(self, account: Account, state: AccountState) -> None:
        account.state = state.value
        await self.session.commit()
        logger.info("account_state_changed", account_id=account.id, state=state.value)

    async def delete(self, account: Account) -> None:
        """Remove the account and every file record it owns in one transaction."""

        account_id = account.id
        await self.session.execute(delete(StoredFile).where(StoredFile.account_id == account_id))
        await self.session.delete(account)
        await self.session.commit()
        logger.info("account_deleted", account_id=account_id)


__all__ = ["AccountService"]
