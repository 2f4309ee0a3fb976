"""Route one inbound event to onboarding, ingestion or the command interpreter."""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import GatewaySettings
from app.db.models.core import Account
from app.domain.models import InboundEvent
from app.i18n import I18nService, get_i18n
from app.logging import logger
from app.services.accounts import AccountService
from app.services.commands import CommandInterpreter
from app.services.downloader import MediaDownloader
from app.services.exceptions import PersistenceFailure, TransientIOFailure
from app.services.ingestion import MediaIngestionPipeline
from app.services.messaging import MessageSender
from app.services.object_store import ObjectStoreGateway
from app.services.rate_limit import RateLimiter
from app.utils.locks import KeyedLock
from app.utils.units import format_mb


class InboundOrchestrator:
    """Long-lived entry point; per-event collaborators are bound to the event's session."""

    def __init__(
        self,
        *,
        store: ObjectStoreGateway,
        downloader: MediaDownloader,
        sender: MessageSender,
        rate_limiter: RateLimiter,
        settings: GatewaySettings,
        locks: KeyedLock | None = None,
        i18n: I18nService | None = None,
    ) -> None:
        self.store = store
        self.downloader = downloader
        self.sender = sender
        self.rate_limiter = rate_limiter
        self.settings = settings
        self.locks = locks or KeyedLock()
        self.i18n = i18n or get_i18n(settings.default_language)

    async def handle(self, session: AsyncSession, event: InboundEvent) -> None:
        try:
            await self._handle(session, event)
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("inbound_persistence_failed", sender=event.sender, error=str(exc))
            raise PersistenceFailure(f"Could not process event from {event.sender}") from exc

    async def _handle(self, session: AsyncSession, event: InboundEvent) -> None:
        accounts = AccountService(session, self.settings)
        account, _ = await accounts.resolve(event.sender)

        if not account.onboarded and await self._claim_onboarding(accounts, account):
            await self.sender.send_text(
                event.sender,
                self.i18n.gettext(
                    "onboarding.welcome",
                    free_mb=format_mb(account.storage_limit_bytes, decimals=0),
                ),
            )

        if event.has_attachments:
            await self._ingest_all(session, account, event)
            return

        if event.text.strip():
            interpreter = CommandInterpreter(
                session,
                store=self.store,
                sender=self.sender,
                locks=self.locks,
                settings=self.settings,
                i18n=self.i18n,
            )
            await interpreter.handle(account, event.text)

    async def _claim_onboarding(self, accounts: AccountService, account: Account) -> bool:
        """Set the onboarded flag under the account lock; True only for the caller that set it."""

        async with self.locks.hold(account.id):
            account = await accounts.reload_for_update(account)
            if account.onboarded:
                await accounts.session.commit()
                return False
            await accounts.mark_onboarded(account)
        return True

    async def _ingest_all(self, session: AsyncSession, account: Account, event: InboundEvent) -> None:
        if not await self.rate_limiter.admit(event.sender):
            await self.sender.send_text(
                event.sender,
                self.i18n.gettext("rate_limit.exceeded", limit=self.rate_limiter.limit),
            )
            return

        pipeline = MediaIngestionPipeline(
            session,
            store=self.store,
            downloader=self.downloader,
            locks=self.locks,
            settings=self.settings,
            i18n=self.i18n,
        )
        for index, attachment in enumerate(event.attachments):
            try:
                result = await pipeline.ingest(account, attachment)
            except TransientIOFailure as exc:
                logger.warning(
                    "attachment_failed",
                    account_id=account.id,
                    attachment_index=index,
                    mime_type=attachment.mime_type,
                    error=str(exc),
                )
                await self.sender.send_text(
                    event.sender, self.i18n.gettext("ingest.download_failed")
                )
                continue
            await self.sender.send_text(event.sender, result.reply)


__all__ = ["InboundOrchestrator"]
