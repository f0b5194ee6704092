from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from aptos_sdk.account import Account
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import func, or_, select, update

from predikto.adapters.aptos import AptosAdapter
from predikto.core.errors import BotError, SubmissionError, ValidationError
from predikto.db.models import Account as AccountRow

logger = logging.getLogger(__name__)

PRIVATE_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def validate_private_key(text: str) -> str | None:
    key = (text or "").strip()
    if not PRIVATE_KEY_RE.match(key):
        return None
    return key


def _key_hex(account: Account) -> str:
    raw = account.private_key.hex()
    return raw[2:] if raw.startswith("0x") else raw


@dataclass
class WalletHandle:
    account: Account
    in_progress: bool
    created: bool = False

    @property
    def address(self) -> str:
        return str(self.account.address())


class WalletService:
    """Keypairs per chat user, encrypted at rest, plus the per-user busy flag."""

    def __init__(
        self,
        db_factory,
        aptos: AptosAdapter,
        cipher: Fernet,
        funder_private_key: str = "",
        funding_amount_octas: int = 20_000_000,
        busy_stale_after: int = 300,
    ) -> None:
        self.db_factory = db_factory
        self.aptos = aptos
        self.cipher = cipher
        self.funder_private_key = funder_private_key
        self.funding_amount_octas = funding_amount_octas
        self.busy_stale_after = busy_stale_after

    def _encrypt(self, private_key_hex: str) -> str:
        return self.cipher.encrypt(private_key_hex.encode("utf-8")).decode("utf-8")

    def _load_account(self, row: AccountRow) -> Account:
        try:
            key = self.cipher.decrypt(row.encrypted_private_key.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise BotError(f"Stored key for user {row.user_id} cannot be decrypted") from exc
        return self.aptos.account_from_private_key(key)

    async def _get_row(self, session, user_id: str) -> AccountRow | None:
        q = await session.execute(select(AccountRow).where(AccountRow.user_id == user_id))
        return q.scalar_one_or_none()

    async def has_wallet(self, user_id: str) -> bool:
        async with self.db_factory() as session:
            q = await session.execute(select(func.count()).select_from(AccountRow).where(AccountRow.user_id == user_id))
            return int(q.scalar_one()) > 0

    async def get_address(self, user_id: str) -> str | None:
        async with self.db_factory() as session:
            q = await session.execute(select(AccountRow.address).where(AccountRow.user_id == user_id))
            return q.scalar_one_or_none()

    async def get_or_create_wallet(self, user_id: str) -> WalletHandle:
        async with self.db_factory() as session:
            row = await self._get_row(session, user_id)
            if row:
                return WalletHandle(account=self._load_account(row), in_progress=row.in_progress)

            account = self.aptos.generate_account()
            row = AccountRow(
                user_id=user_id,
                address=str(account.address()),
                public_key=str(account.public_key()),
                encrypted_private_key=self._encrypt(_key_hex(account)),
                in_progress=False,
            )
            session.add(row)
            await session.commit()
            logger.info("wallet_created", extra={"event": "wallet_created", "user_id": user_id})
            return WalletHandle(account=account, in_progress=False, created=True)

    async def import_wallet(self, user_id: str, private_key_hex: str) -> Account:
        key = validate_private_key(private_key_hex)
        if key is None:
            raise ValidationError("Private key must be 64 hex characters")
        account = self.aptos.account_from_private_key(key)

        async with self.db_factory() as session:
            row = await self._get_row(session, user_id)
            if row is None:
                row = AccountRow(user_id=user_id)
                session.add(row)
            row.address = str(account.address())
            row.public_key = str(account.public_key())
            row.encrypted_private_key = self._encrypt(key.lower())
            row.in_progress = False
            row.busy_since = None
            await session.commit()
        logger.info("wallet_imported", extra={"event": "wallet_imported", "user_id": user_id})
        return account

    async def fund_wallet(self, user_id: str, account: Account) -> str:
        if not self.funder_private_key:
            raise SubmissionError("Funder private key not configured")
        funder = self.aptos.account_from_private_key(self.funder_private_key)
        tx_hash = await self.aptos.transfer(funder, str(account.address()), self.funding_amount_octas)

        async with self.db_factory() as session:
            await session.execute(update(AccountRow).where(AccountRow.user_id == user_id).values(funded=True))
            await session.commit()
        logger.info("wallet_funded", extra={"event": "wallet_funded", "user_id": user_id, "tx_hash": tx_hash})
        return tx_hash

    async def try_acquire(self, user_id: str) -> bool:
        """Atomically flip the busy flag on. Only one concurrent caller wins."""
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.busy_stale_after)
        async with self.db_factory() as session:
            result = await session.execute(
                update(AccountRow)
                .where(AccountRow.user_id == user_id)
                .where(or_(AccountRow.in_progress.is_(False), AccountRow.busy_since < cutoff))
                .values(in_progress=True, busy_since=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def release(self, user_id: str) -> None:
        async with self.db_factory() as session:
            await session.execute(
                update(AccountRow).where(AccountRow.user_id == user_id).values(in_progress=False, busy_since=None)
            )
            await session.commit()

    async def is_busy(self, user_id: str) -> bool:
        async with self.db_factory() as session:
            q = await session.execute(select(AccountRow.in_progress).where(AccountRow.user_id == user_id))
            return bool(q.scalar_one_or_none())

    async def release_stale(self) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.busy_stale_after)
        async with self.db_factory() as session:
            result = await session.execute(
                update(AccountRow)
                .where(AccountRow.in_progress.is_(True))
                .where(or_(AccountRow.busy_since.is_(None), AccountRow.busy_since < cutoff))
                .values(in_progress=False, busy_since=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return int(result.rowcount or 0)
