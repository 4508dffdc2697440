"""
Tests for the unit_of_work transaction helper.
"""
import logging

import pytest
from sqlalchemy import func, select

from database import unit_of_work
from db_models import Voucher
from domain.errors import NotFoundError, TransactionAbortError


async def _voucher_count(db) -> int:
    return (await db.execute(select(func.count(Voucher.id)))).scalar()


@pytest.mark.asyncio
async def test_commits_on_success(db_session):
    async with unit_of_work(db_session, name="add_voucher"):
        db_session.add(Voucher(code="WELCOME", active=True))

    await db_session.rollback()
    assert await _voucher_count(db_session) == 1


@pytest.mark.asyncio
async def test_domain_error_rolls_back_and_propagates(db_session):
    with pytest.raises(NotFoundError):
        async with unit_of_work(db_session, name="add_voucher"):
            db_session.add(Voucher(code="WELCOME", active=True))
            await db_session.flush()
            raise NotFoundError("Dish", "99")

    assert await _voucher_count(db_session) == 0


@pytest.mark.asyncio
async def test_unexpected_error_is_wrapped_without_leaking_its_text(db_session, caplog):
    original = RuntimeError("secret driver text")

    with caplog.at_level(logging.ERROR, logger="database"):
        with pytest.raises(TransactionAbortError) as exc_info:
            async with unit_of_work(db_session, name="add_voucher"):
                db_session.add(Voucher(code="WELCOME", active=True))
                await db_session.flush()
                raise original

    err = exc_info.value
    assert err.status_code == 500
    assert err.details == {"operation": "add_voucher"}
    assert "secret driver text" not in err.message
    assert "secret driver text" not in str(err.details)
    assert err.__cause__ is original
    assert "secret driver text" in caplog.text
    assert await _voucher_count(db_session) == 0
