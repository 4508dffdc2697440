"""
Loyalty ledger: records the "earn" entry for a delivered order.

The points formula belongs to the loyalty program, not to order
processing: we only record how much was spent on which order, once.
Exactly-once is enforced twice: has_earn_entry() is checked before
writing, and (order_id, type) is unique in loyalty_transactions.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import LoyaltyTransaction

logger = logging.getLogger(__name__)

EARN = "earn"


class LoyaltyLedger:
    async def has_earn_entry(self, db: AsyncSession, order_id: int) -> bool:
        result = await db.execute(
            select(LoyaltyTransaction.id).where(
                LoyaltyTransaction.order_id == order_id,
                LoyaltyTransaction.type == EARN,
            )
        )
        return result.scalar_one_or_none() is not None

    async def accrue_for_order(
        self,
        db: AsyncSession,
        *,
        user_id: int,
        order_id: int,
        amount_spent: float,
    ) -> bool:
        """
        Add the earn entry for `order_id` unless one exists.

        Runs inside the caller's transaction (flush only).
        Returns True if an entry was written.
        """
        if await self.has_earn_entry(db, order_id):
            logger.info(f"Loyalty already accrued for order {order_id}; skipping")
            return False

        db.add(LoyaltyTransaction(
            user_id=user_id,
            order_id=order_id,
            type=EARN,
            amount_spent=amount_spent,
        ))
        await db.flush()
        logger.info(f"Loyalty earn recorded: order {order_id}, user {user_id}, spent {amount_spent:,.0f}")
        return True
