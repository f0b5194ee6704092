from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from predikto.adapters.aptos import AptosAdapter
from predikto.core.errors import SubmissionError, ValidationError
from predikto.db.models import Account as AccountRow
from predikto.db.models import Base
from predikto.db.session import build_session_factory
from predikto.services.wallets import WalletService, validate_private_key


class DummyAptos:
    def __init__(self) -> None:
        self.transfers: list[tuple[str, int]] = []

    generate_account = staticmethod(AptosAdapter.generate_account)
    account_from_private_key = staticmethod(AptosAdapter.account_from_private_key)

    async def transfer(self, sender, recipient: str, amount_octas: int) -> str:
        self.transfers.append((recipient, amount_octas))
        return "0xfund"


async def _service(**kwargs) -> tuple[WalletService, object]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = build_session_factory(engine)
    service = WalletService(factory, DummyAptos(), Fernet(Fernet.generate_key()), **kwargs)
    return service, factory


def test_validate_private_key() -> None:
    key = "0123456789abcdefABCDEF0123456789abcdef0123456789abcdef0123456789"
    assert validate_private_key(f"  {key}\n") == key
    assert validate_private_key("not-hex") is None
    assert validate_private_key("ab" * 31) is None
    assert validate_private_key("0x" + "ab" * 31) is None


@pytest.mark.asyncio
async def test_wallet_is_created_once_and_key_is_encrypted() -> None:
    service, factory = await _service()

    first = await service.get_or_create_wallet("u1")
    second = await service.get_or_create_wallet("u1")

    assert first.created and not second.created
    assert first.address == second.address
    assert await service.get_address("u1") == first.address
    async with factory() as session:
        row = (await session.execute(select(AccountRow).where(AccountRow.user_id == "u1"))).scalar_one()
    assert first.account.private_key.hex().removeprefix("0x") not in row.encrypted_private_key


@pytest.mark.asyncio
async def test_busy_flag_is_exclusive() -> None:
    service, _ = await _service()
    await service.get_or_create_wallet("u1")

    assert await service.try_acquire("u1") is True
    assert await service.try_acquire("u1") is False
    assert await service.is_busy("u1")

    await service.release("u1")
    assert not await service.is_busy("u1")
    assert await service.try_acquire("u1") is True


@pytest.mark.asyncio
async def test_unknown_user_cannot_acquire() -> None:
    service, _ = await _service()
    assert await service.try_acquire("ghost") is False


@pytest.mark.asyncio
async def test_stale_flags_are_released() -> None:
    service, factory = await _service(busy_stale_after=60)
    await service.get_or_create_wallet("u1")
    await service.get_or_create_wallet("u2")
    await service.try_acquire("u1")
    await service.try_acquire("u2")
    async with factory() as session:
        await session.execute(
            update(AccountRow)
            .where(AccountRow.user_id == "u1")
            .values(busy_since=datetime.now(timezone.utc) - timedelta(minutes=10))
        )
        await session.commit()

    assert await service.release_stale() == 1
    assert not await service.is_busy("u1")
    assert await service.is_busy("u2")


@pytest.mark.asyncio
async def test_import_replaces_wallet_and_resets_flag() -> None:
    service, _ = await _service()
    await service.get_or_create_wallet("u1")
    await service.try_acquire("u1")
    key = "ab" * 32

    account = await service.import_wallet("u1", key)

    assert await service.get_address("u1") == str(account.address())
    assert not await service.is_busy("u1")
    reloaded = await service.get_or_create_wallet("u1")
    assert reloaded.address == str(account.address())


@pytest.mark.asyncio
async def test_import_rejects_bad_key() -> None:
    service, _ = await _service()
    with pytest.raises(ValidationError):
        await service.import_wallet("u1", "not-hex")
    assert not await service.has_wallet("u1")


@pytest.mark.asyncio
async def test_funding_marks_wallet() -> None:
    service, factory = await _service(funder_private_key="cd" * 32, funding_amount_octas=20_000_000)
    wallet = await service.get_or_create_wallet("u1")

    assert await service.fund_wallet("u1", wallet.account) == "0xfund"
    assert service.aptos.transfers == [(wallet.address, 20_000_000)]
    async with factory() as session:
        funded = (await session.execute(select(AccountRow.funded).where(AccountRow.user_id == "u1"))).scalar_one()
    assert funded is True


@pytest.mark.asyncio
async def test_funding_without_funder_key() -> None:
    service, _ = await _service()
    wallet = await service.get_or_create_wallet("u1")
    with pytest.raises(SubmissionError):
        await service.fund_wallet("u1", wallet.account)


@pytest.mark.asyncio
async def test_reloading_wallet_writes_nothing_to_stdout(capsys) -> None:
    service, _ = await _service()
    created = await service.get_or_create_wallet("u1")
    capsys.readouterr()

    reloaded = await service.get_or_create_wallet("u1")

    assert reloaded.address == created.address
    assert capsys.readouterr().out == ""


@pytest.mark.asyncio
async def test_recent_busy_flag_is_not_stale() -> None:
    service, _ = await _service(busy_stale_after=60)
    await service.get_or_create_wallet("u1")
    await service.try_acquire("u1")

    assert await service.release_stale() == 0
    assert await service.try_acquire("u1") is False
