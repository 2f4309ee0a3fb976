"""Text command parsing, execution and the delete-confirmation state machine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import GatewaySettings, get_settings
from app.db.models.core import Account, StoredFile
from app.domain.models import AccountState, MediaCategory
from app.i18n import I18nService, get_i18n
from app.logging import logger
from app.services.accounts import AccountService
from app.services.exceptions import ObjectNotFound, StoreUnavailable, TransientIOFailure
from app.services.messaging import MessageSender
from app.utils.locks import KeyedLock
from app.utils.units import format_kb, format_mb, round_half_up

AFFIRMATIVE = "yes"
USAGE_BAR_SEGMENTS = 10
NEARLY_FULL_PERCENT = 90
DATE_FORMAT = "%d/%m/%Y"


class Intent(str, Enum):
    STORAGE = "storage"
    RETRIEVE = "retrieve"
    DELETE_ACCOUNT = "delete_account"
    UPGRADE = "upgrade"
    HELP = "help"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Command:
    intent: Intent
    category: MediaCategory | None = None


COMMAND_TABLE: dict[str, Command] = {
    "storage": Command(Intent.STORAGE),
    "show my photos": Command(Intent.RETRIEVE, MediaCategory.IMAGE),
    "show my videos": Command(Intent.RETRIEVE, MediaCategory.VIDEO),
    "show my audio": Command(Intent.RETRIEVE, MediaCategory.AUDIO),
    "show my files": Command(Intent.RETRIEVE, MediaCategory.DOCUMENT),
    "show my documents": Command(Intent.RETRIEVE, MediaCategory.DOCUMENT),
    "recent files": Command(Intent.RETRIEVE),
    "delete account": Command(Intent.DELETE_ACCOUNT),
    "upgrade": Command(Intent.UPGRADE),
    "help": Command(Intent.HELP),
    "start": Command(Intent.HELP),
}
UNKNOWN_COMMAND = Command(Intent.UNKNOWN)

RETRIEVE_LABELS: dict[MediaCategory | None, str] = {
    MediaCategory.IMAGE: "photos",
    MediaCategory.VIDEO: "videos",
    MediaCategory.AUDIO: "audio",
    MediaCategory.DOCUMENT: "documents",
    None: "files",
}


class Signal(str, Enum):
    DELETE_REQUEST = "delete_request"
    AFFIRMATIVE = "affirmative"
    OTHER = "other"


TRANSITIONS: dict[tuple[AccountState, Signal], AccountState] = {
    (AccountState.NORMAL, Signal.DELETE_REQUEST): AccountState.AWAITING_CONFIRM,
    (AccountState.NORMAL, Signal.OTHER): AccountState.NORMAL,
    (AccountState.AWAITING_CONFIRM, Signal.AFFIRMATIVE): AccountState.DELETED,
    (AccountState.AWAITING_CONFIRM, Signal.OTHER): AccountState.NORMAL,
}


def normalize_text(text: str) -> str:
    normalized = " ".join(text.split()).casefold()
    if normalized.startswith("/"):
        normalized = normalized[1:].lstrip()
    return normalized


def parse_command(normalized: str) -> Command:
    return COMMAND_TABLE.get(normalized, UNKNOWN_COMMAND)


def classify(state: AccountState, text: str) -> Signal:
    """Map raw input text to a state-machine signal; commands are ignored while confirming."""

    if state is AccountState.AWAITING_CONFIRM:
        # Confirmation is literal: trimmed and case-folded, nothing else.
        return Signal.AFFIRMATIVE if text.strip().casefold() == AFFIRMATIVE else Signal.OTHER
    if parse_command(normalize_text(text)).intent is Intent.DELETE_ACCOUNT:
        return Signal.DELETE_REQUEST
    return Signal.OTHER


def usage_percent(used_bytes: int, limit_bytes: int) -> int:
    if limit_bytes <= 0:
        return 100
    return min(100, round_half_up(used_bytes * 100 / limit_bytes))


def usage_bar(percent: int, segments: int = USAGE_BAR_SEGMENTS) -> str:
    filled = min(segments, round_half_up(percent / (100 / segments)))
    return "█" * filled + "░" * (segments - filled)


class PrefixStore(Protocol):
    async def presigned_url(self, key: str) -> str: ...

    async def delete_prefix(self, prefix: str) -> int: ...


class CommandInterpreter:
    def __init__(
        self,
        session: AsyncSession,
        *,
        store: PrefixStore,
        sender: MessageSender,
        locks: KeyedLock,
        settings: GatewaySettings | None = None,
        i18n: I18nService | None = None,
    ) -> None:
        self.session = session
        self.store = store
        self.sender = sender
        self.locks = locks
        self.settings = settings or get_settings()
        self.i18n = i18n or get_i18n(self.settings.default_language)
        self.accounts = AccountService(session, self.settings)

    async def handle(self, account: Account, text: str) -> AccountState:
        """Apply one text message to ``account`` and return its resulting state."""

        normalized = normalize_text(text)
        address = account.address

        async with self.locks.hold(account.id):
            account = await self.accounts.reload_for_update(account)
            state = AccountState(account.state)
            signal = classify(state, text)
            target = TRANSITIONS[(state, signal)]

            if target is AccountState.DELETED:
                reply_key = await self._delete_account(account)
                await self.sender.send_text(address, self.i18n.gettext(reply_key))
                return AccountState.DELETED if reply_key == "delete.done" else state
            if target is not state:
                await self.accounts.set_state(account, target)
            else:
                await self.session.commit()

        if state is AccountState.AWAITING_CONFIRM:
            await self.sender.send_text(address, self.i18n.gettext("delete.cancelled"))
            return target
        if target is AccountState.AWAITING_CONFIRM:
            await self.sender.send_text(address, self.i18n.gettext("delete.confirm"))
            return target

        command = parse_command(normalized)
        try:
            await self._execute(account, command)
        except TransientIOFailure as exc:
            logger.warning(
                "command_failed",
                account_id=account.id,
                intent=command.intent.value,
                error=str(exc),
            )
            await self.sender.send_text(address, self.i18n.gettext("commands.error"))
        return target

    async def _execute(self, account: Account, command: Command) -> None:
        address = account.address
        if command.intent is Intent.STORAGE:
            await self.sender.send_text(address, self.render_storage(account))
        elif command.intent is Intent.RETRIEVE:
            await self._retrieve(account, command.category)
        elif command.intent is Intent.UPGRADE:
            await self.sender.send_text(
                address,
                self.i18n.gettext("commands.upgrade", upgrade_url=str(self.settings.upgrade_url)),
            )
        elif command.intent is Intent.HELP:
            await self.sender.send_text(
                address,
                self.i18n.gettext(
                    "commands.help", retrieval_limit=self.settings.media.retrieval_limit
                ),
            )
        else:
            await self.sender.send_text(address, self.i18n.gettext("commands.unknown"))

    def render_storage(self, account: Account) -> str:
        used = account.storage_used_bytes
        limit = account.storage_limit_bytes
        percent = usage_percent(used, limit)
        text = self.i18n.gettext(
            "storage.summary",
            used_mb=format_mb(used),
            limit_mb=format_mb(limit, decimals=0),
            bar=usage_bar(percent),
            percent=percent,
            remaining_mb=format_mb(account.storage_remaining_bytes),
        )
        if percent >= NEARLY_FULL_PERCENT:
            text += self.i18n.gettext("storage.nearly_full")
        return text

    async def recent_files(
        self, account: Account, category: MediaCategory | None = None, limit: int | None = None
    ) -> Sequence[StoredFile]:
        stmt = (
            select(StoredFile)
            .where(StoredFile.account_id == account.id)
            .order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
            .limit(limit or self.settings.media.retrieval_limit)
        )
        if category is not None:
            stmt = stmt.where(StoredFile.category == category.value)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def _retrieve(self, account: Account, category: MediaCategory | None) -> None:
        address = account.address
        files = await self.recent_files(account, category)
        if not files:
            await self.sender.send_text(
                address,
                self.i18n.gettext("retrieve.empty", label=RETRIEVE_LABELS[category]),
            )
            return

        await self.sender.send_text(
            address,
            self.i18n.gettext(
                "retrieve.sending",
                count=len(files),
                noun="file" if len(files) == 1 else "files",
            ),
        )
        for stored in files:
            try:
                url = await self.store.presigned_url(stored.storage_key)
            except ObjectNotFound:
                logger.warning(
                    "retrieve_object_missing",
                    account_id=account.id,
                    storage_key=stored.storage_key,
                )
                await self.sender.send_text(
                    address,
                    self.i18n.gettext("retrieve.missing", filename=stored.original_name),
                )
                continue
            caption = self.i18n.gettext(
                "retrieve.caption",
                filename=stored.original_name,
                date=stored.created_at.strftime(DATE_FORMAT),
                size_kb=format_kb(stored.size_bytes),
            )
            await self.sender.send_media(address, url, caption)

    async def _delete_account(self, account: Account) -> str:
        """Remove objects, then records. Returns the reply key to send.

        Runs under the account lock so no upload can be finalized between the
        prefix sweep and the record deletion. If the sweep fails the account
        stays in AWAITING_CONFIRM and a repeated YES resumes the sweep.
        """

        account_id = account.id
        try:
            removed = await self.store.delete_prefix(account.storage_prefix)
        except StoreUnavailable as exc:
            await self.session.commit()
            logger.warning("account_delete_incomplete", account_id=account_id, error=str(exc))
            return "delete.failed"

        await self.accounts.delete(account)
        logger.info("account_purged", account_id=account_id, objects_removed=removed)
        return "delete.done"


__all__ = [
    "AFFIRMATIVE",
    "COMMAND_TABLE",
    "Command",
    "CommandInterpreter",
    "Intent",
    "Signal",
    "TRANSITIONS",
    "classify",
    "normalize_text",
    "parse_command",
    "usage_bar",
    "usage_percent",
]
