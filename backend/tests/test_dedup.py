import pytest
from sqlalchemy.exc import OperationalError

from receiptscan.core.errors import DeduplicationCheckError
from receiptscan.models.tables import Receipt
from receiptscan.services.dedup_service import DeduplicationGuard
from receiptscan.utils.helpers import compute_content_hash

from fakes import FIXED_NOW


class _BrokenSession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT count(receipts.id)", {}, Exception("database is locked"))


async def _store(session_factory, seeded, image: bytes, **extra) -> Receipt:
    receipt = Receipt(
        owner_id=seeded["user_id"],
        category_id=seeded["category_id"],
        image=image,
        content_hash=compute_content_hash(image),
        **extra,
    )
    async with session_factory() as session:
        session.add(receipt)
        await session.commit()
    return receipt


@pytest.mark.asyncio
async def test_unknown_hash_is_not_a_duplicate(session_factory, seeded):
    guard = DeduplicationGuard(session_factory)
    assert await guard.exists(compute_content_hash(b"never seen")) is False


@pytest.mark.asyncio
async def test_live_receipt_is_a_duplicate(session_factory, seeded):
    await _store(session_factory, seeded, b"receipt-1")
    guard = DeduplicationGuard(session_factory)
    assert await guard.exists(compute_content_hash(b"receipt-1")) is True


@pytest.mark.asyncio
async def test_soft_deleted_receipt_frees_its_hash(session_factory, seeded):
    await _store(session_factory, seeded, b"receipt-2", deleted_at=FIXED_NOW)
    guard = DeduplicationGuard(session_factory)
    assert await guard.exists(compute_content_hash(b"receipt-2")) is False


@pytest.mark.asyncio
async def test_lookup_failure_fails_closed():
    guard = DeduplicationGuard(lambda: _BrokenSession())
    with pytest.raises(DeduplicationCheckError) as excinfo:
        await guard.exists("a" * 64)
    assert excinfo.value.http_status == 503
