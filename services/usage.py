"""Usage debit: consume credits for one feature invocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database import unit_of_work
from models.credit_transaction import TransactionType
from services.errors import IdempotencyConflict, InsufficientCredits
from services.ledger import AccountLedger
from services.transactions import TransactionRecorder

logger = logging.getLogger(__name__)

UNLIMITED = "unlimited"


@dataclass(frozen=True)
class ConsumeResult:
    remaining_credits: Union[int, str]
    charged: int
    transaction_id: Optional[str] = None
    replayed: bool = False


class UsageDebit:
    """Enforcement point for credit consumption.

    Premium accounts are never charged and nothing is recorded for them.
    Free accounts are debited with a conditional update, so the balance check
    here is repeated by the store at commit time.
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

    async def consume(
        self,
        account_id: str,
        amount: int,
        description: str,
        *,
        request_id: Optional[str] = None,
    ) -> ConsumeResult:
        amount = int(amount)
        if amount <= 0:
            raise ValueError("amount must be greater than 0")

        state = await self.ledger.get_account(account_id)
        if state.is_premium:
            return ConsumeResult(remaining_credits=UNLIMITED, charged=0)

        if request_id:
            replay = await self._replay(account_id, request_id, amount)
            if replay is not None:
                return replay

        if state.credits < amount:
            logger.warning(
                "Declined debit account=%s amount=%s available=%s",
                account_id,
                amount,
                state.credits,
            )
            raise InsufficientCredits(required=amount, available=state.credits)

        try:
            async with unit_of_work(self.db):
                new_balance = await self.ledger.adjust_balance(account_id, -amount)
                entry = await self.recorder.record(
                    account_id,
                    -amount,
                    TransactionType.USAGE,
                    description,
                    request_id=request_id,
                    balance_after=new_balance,
                )
        except InsufficientCredits as exc:
            logger.warning(
                "Declined debit at commit account=%s amount=%s available=%s",
                account_id,
                amount,
                exc.available,
            )
            raise
        except IntegrityError:
            if not request_id:
                raise
            replay = await self._replay(account_id, request_id, amount)
            if replay is None:
                raise
            return replay

        logger.info(
            "Debited account=%s delta=%s type=%s balance=%s",
            account_id,
            -amount,
            TransactionType.USAGE.value,
            new_balance,
        )
        return ConsumeResult(remaining_credits=new_balance, charged=amount, transaction_id=entry.id)

    async def _replay(self, account_id: str, request_id: str, amount: int) -> Optional[ConsumeResult]:
        existing = await self.recorder.find_by_request_id(account_id, request_id)
        if existing is None:
            return None
        if existing.type != TransactionType.USAGE.value or existing.amount != -amount:
            logger.warning("Idempotency key reused account=%s request=%s", account_id, request_id)
            raise IdempotencyConflict(request_id)
        state = await self.ledger.get_account(account_id)
        return ConsumeResult(
            remaining_credits=state.credits,
            charged=-existing.amount,
            transaction_id=existing.id,
            replayed=True,
        )
