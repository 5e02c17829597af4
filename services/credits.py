"""Credit ledger and usage accounting helpers."""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from database import unit_of_work
from models.account import AccountTier
from services.ledger import AccountLedger, AccountState
from services.purchases import CreditGrant, PurchaseIntake
from services.transactions import TransactionRecorder
from services.usage import ConsumeResult, UsageDebit
from services.usage_gate import Capabilities, UsageGate, capabilities_for


class CreditService:
    """Per-request facade over the ledger components, sharing one session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = AccountLedger(db)
        self.recorder = TransactionRecorder(db)
        self.gate = UsageGate(db, ledger=self.ledger)
        self.purchases = PurchaseIntake(db, ledger=self.ledger, recorder=self.recorder)
        self.usage = UsageDebit(db, ledger=self.ledger, recorder=self.recorder)

    async def check(self, account_id: str) -> Dict[str, Any]:
        state = await self.ledger.get_account(account_id)
        capabilities = capabilities_for(state)
        return {
            "credits": state.credits,
            "tier": state.tier.value,
            "canUseAI": capabilities.can_use_ai,
            "canExport": capabilities.can_export,
        }

    async def can_consume(self, account_id: str, amount: int = 1) -> Capabilities:
        return await self.gate.can_consume(account_id, amount)

    async def consume(
        self,
        account_id: str,
        amount: int,
        description: str,
        request_id: Optional[str] = None,
    ) -> ConsumeResult:
        return await self.usage.consume(account_id, amount, description, request_id=request_id)

    async def apply_purchase(
        self,
        account_id: str,
        package_id: str,
        request_id: Optional[str] = None,
    ) -> CreditGrant:
        return await self.purchases.apply_purchase(account_id, package_id, request_id=request_id)

    async def grant_bonus(
        self,
        account_id: str,
        credits: int,
        description: str,
        request_id: Optional[str] = None,
    ) -> CreditGrant:
        return await self.purchases.grant_bonus(account_id, credits, description, request_id=request_id)

    async def set_tier(self, account_id: str, tier: AccountTier) -> AccountState:
        async with unit_of_work(self.db):
            state = await self.ledger.set_tier(account_id, tier)
        return state

    async def transaction_history(self, account_id: str, limit: int = 50) -> Dict[str, Any]:
        await self.ledger.get_account(account_id)
        entries = await self.recorder.list_for_account(account_id, limit=limit)
        return {
            "transactions": [
                {
                    "id": entry.id,
                    "amount": entry.amount,
                    "type": entry.type,
                    "description": entry.description,
                    "balanceAfter": entry.balance_after,
                    "createdAt": entry.created_at.isoformat() if entry.created_at else None,
                }
                for entry in entries
            ],
        }

    async def reconcile(self, account_id: str) -> Dict[str, Any]:
        """Compare the stored balance with the sum of the account's transactions."""
        state = await self.ledger.get_account(account_id)
        ledger_sum, count = await self.recorder.ledger_totals(account_id)
        return {
            "accountId": account_id,
            "balance": state.credits,
            "ledgerSum": ledger_sum,
            "transactionCount": count,
            "consistent": state.credits == ledger_sum,
        }
