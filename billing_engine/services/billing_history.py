"""Read-only projection over payment transactions."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.db.models.core import PaymentTransaction
from billing_engine.domain.models import PaymentTransactionModel
from billing_engine.services.exceptions import TransientStorageError
from billing_engine.services.usage import STORAGE_ERRORS

MAX_PAGE_SIZE = 100


class BillingHistoryReader:
    def __init__(self, session: AsyncSession, page_size: int = 20) -> None:
        self.session = session
        self.page_size = max(1, min(page_size, MAX_PAGE_SIZE))

    async def get_history(self, user_id: int, page: int = 1) -> list[PaymentTransactionModel]:
        """Newest first; ``page`` is 1-based."""

        page = max(1, page)
        stmt = (
            select(PaymentTransaction)
            .where(PaymentTransaction.user_id == user_id)
            .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
            .offset((page - 1) * self.page_size)
            .limit(self.page_size)
        )
        try:
            result = await self.session.execute(stmt)
        except STORAGE_ERRORS as exc:
            raise TransientStorageError(f"Billing history read failed: {exc}") from exc
        return [PaymentTransactionModel.model_validate(row) for row in result.scalars()]


__all__ = ["BillingHistoryReader", "MAX_PAGE_SIZE"]
