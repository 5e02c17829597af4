"""Append-only credit transaction recorder."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple
import uuid

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction, TransactionType


class TransactionRecorder:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        account_id: str,
        amount: int,
        type: TransactionType,
        description: str,
        *,
        request_id: Optional[str] = None,
        balance_after: Optional[int] = None,
    ) -> CreditTransaction:
        """Stage one transaction row on the current unit of work."""
        entry = CreditTransaction(
            id=str(uuid.uuid4()),
            account_id=account_id,
            amount=int(amount),
            type=TransactionType(type).value,
            description=description or "",
            request_id=request_id,
            balance_after=balance_after,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def find_by_request_id(self, account_id: str, request_id: str) -> Optional[CreditTransaction]:
        result = await self.db.execute(
            select(CreditTransaction).where(
                CreditTransaction.account_id == account_id,
                CreditTransaction.request_id == request_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_account(self, account_id: str, limit: int = 50) -> List[CreditTransaction]:
        result = await self.db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.account_id == account_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .limit(max(int(limit), 1))
        )
        return list(result.scalars().all())

    async def ledger_totals(self, account_id: str) -> Tuple[int, int]:
        """Return ``(sum of amounts, row count)`` for the account."""
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(CreditTransaction.amount), 0),
                func.count(CreditTransaction.id),
            ).where(CreditTransaction.account_id == account_id)
        )
        total, count = result.one()
        return int(total or 0), int(count or 0)
