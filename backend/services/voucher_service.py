"""
Voucher validity check.

Discount rules are evaluated by the promotions module; order placement
only asks whether the referenced voucher may be used at all.
"""
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Voucher
from domain.errors import ValidationError


class VoucherChecker:
    async def is_valid(self, db: AsyncSession, voucher_id: int, *, now: datetime | None = None) -> bool:
        result = await db.execute(select(Voucher).where(Voucher.id == voucher_id))
        voucher = result.scalar_one_or_none()
        if voucher is None or not voucher.active:
            return False
        now = now or datetime.utcnow()
        return voucher.expires_at is None or voucher.expires_at > now

    async def ensure_valid(self, db: AsyncSession, voucher_id: int) -> None:
        if not await self.is_valid(db, voucher_id):
            raise ValidationError("Voucher is invalid or expired", field="voucher_id")
