"""Purchase intake: turn a confirmed payment into credited balance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database import unit_of_work
from models.credit_transaction import TransactionType
from services.errors import IdempotencyConflict
from services.ledger import AccountLedger
from services.packages import resolve_package
from services.transactions import TransactionRecorder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditGrant:
    new_balance: int
    credited: int
    transaction_id: str
    replayed: bool = False


class PurchaseIntake:
    """Credits purchases and bonuses.

    Callers must only invoke ``apply_purchase`` after the payment processor
    has confirmed payment; no payment verification happens here.
    """

    def __init__(
        self,
        db: AsyncSession,
        ledger: Optional[AccountLedger] = None,
        recorder: Optional[TransactionRecorder] = None,
    ):
        self.db = db
        self.ledger = ledger or AccountLedger(db)
        self.recorder = recorder or TransactionRecorder(db)

    async def apply_purchase(
        self,
        account_id: str,
        package_id: str,
        *,
        request_id: Optional[str] = None,
        include_inactive: bool = False,
    ) -> CreditGrant:
        package = await resolve_package(self.db, package_id, include_inactive=include_inactive)
        description = package.description or f"{package.credits} credits ({package.name})"
        return await self._credit(
            account_id,
            package.credits,
            TransactionType.PURCHASE,
            description,
            request_id=request_id,
        )

    async def grant_bonus(
        self,
        account_id: str,
        credits: int,
        description: str,
        *,
        request_id: Optional[str] = None,
    ) -> CreditGrant:
        if int(credits) <= 0:
            raise ValueError("Bonus credits must be greater than 0.")
        return await self._credit(
            account_id,
            int(credits),
            TransactionType.BONUS,
            description,
            request_id=request_id,
        )

    async def _credit(
        self,
        account_id: str,
        credits: int,
        entry_type: TransactionType,
        description: str,
        *,
        request_id: Optional[str],
    ) -> CreditGrant:
        if request_id:
            replay = await self._replay(account_id, request_id, entry_type, credits)
            if replay is not None:
                return replay

        try:
            async with unit_of_work(self.db):
                new_balance = await self.ledger.adjust_balance(account_id, credits)
                entry = await self.recorder.record(
                    account_id,
                    credits,
                    entry_type,
                    description,
                    request_id=request_id,
                    balance_after=new_balance,
                )
        except IntegrityError:
            if not request_id:
                raise
            replay = await self._replay(account_id, request_id, entry_type, credits)
            if replay is None:
                raise
            return replay

        logger.info(
            "Credited account=%s delta=%s type=%s balance=%s",
            account_id,
            credits,
            entry_type.value,
            new_balance,
        )
        return CreditGrant(new_balance=new_balance, credited=credits, transaction_id=entry.id)

    async def _replay(
        self,
        account_id: str,
        request_id: str,
        entry_type: TransactionType,
        credits: int,
    ) -> Optional[CreditGrant]:
        existing = await self.recorder.find_by_request_id(account_id, request_id)
        if existing is None:
            return None
        if existing.type != entry_type.value or existing.amount != credits:
            logger.warning("Idempotency key reused account=%s request=%s", account_id, request_id)
            raise IdempotencyConflict(request_id)
        state = await self.ledger.get_account(account_id)
        logger.info("Replayed credit request account=%s request=%s", account_id, request_id)
        return CreditGrant(
            new_balance=state.credits,
            credited=existing.amount,
            transaction_id=existing.id,
            replayed=True,
        )
