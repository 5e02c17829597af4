"""Report accounts whose balance differs from the sum of their transactions."""

import asyncio
import os
import sys

# Add parent dir to path to find config/database
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.future import select

from config import settings
from database import Database
from models.account import Account
from services.credits import CreditService


async def reconcile_all_async() -> int:
    print("🔍 Reconciling credit ledgers...")
    database = Database(settings.DATABASE_URL)
    database.connect()
    mismatches = 0
    try:
        async with database.session() as session:
            result = await session.execute(select(Account.id).order_by(Account.id))
            account_ids = list(result.scalars().all())
            service = CreditService(session)
            for account_id in account_ids:
                report = await service.reconcile(account_id)
                if not report["consistent"]:
                    mismatches += 1
                    print(
                        f"❌ {account_id}: balance={report['balance']} "
                        f"ledger_sum={report['ledgerSum']} transactions={report['transactionCount']}"
                    )
    finally:
        await database.disconnect()

    print(f"✅ Checked {len(account_ids)} accounts, {mismatches} mismatched.")
    return mismatches


if __name__ == "__main__":
    sys.exit(1 if asyncio.run(reconcile_all_async()) else 0)
