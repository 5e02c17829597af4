from types import SimpleNamespace
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.future import select

from config import settings
from database import get_db
from main import app
from models.account import Account, AccountTier
from models.credit_package import CreditPackage
from models.credit_transaction import CreditTransaction
from services.credits import CreditService
from services.session_token import create_session_token


TEST_ACCOUNT_ID = "credits-api-user"
TEST_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(TEST_ACCOUNT_ID, 'notes@example.com')['token']}"}


@pytest_asyncio.fixture
async def credits_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def stripe_configured(monkeypatch):
    monkeypatch.setattr(settings, "BILLING_ENABLED", True)
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_cards")
    monkeypatch.setattr(settings, "APP_URL", "https://cards.example.com/")


async def _transactions(session_maker, account_id=TEST_ACCOUNT_ID):
    async with session_maker() as session:
        result = await session.execute(
            select(CreditTransaction).where(CreditTransaction.account_id == account_id)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_credit_endpoints_require_bearer_token(credits_client):
    for method, path in (("get", "/credits/check"), ("post", "/credits/use"), ("post", "/credits/purchase")):
        response = await credits_client.request(method.upper(), path, json={"packageId": "starter"})
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "unauthenticated"

    bad = await credits_client.get("/credits/check", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


@pytest.mark.asyncio
async def test_check_returns_404_for_unknown_account(credits_client):
    response = await credits_client.get("/credits/check", headers=TEST_AUTH_HEADER)
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "account_not_found"

    use_resp = await credits_client.post("/credits/use", json={}, headers=TEST_AUTH_HEADER)
    assert use_resp.status_code == 404


@pytest.mark.asyncio
async def test_signup_check_and_declined_use(credits_client, session_maker):
    open_resp = await credits_client.post("/accounts", json={"name": "Note Writer"}, headers=TEST_AUTH_HEADER)
    assert open_resp.status_code == 200
    assert open_resp.json() == {
        "id": TEST_ACCOUNT_ID,
        "email": "notes@example.com",
        "name": "Note Writer",
        "credits": 0,
        "tier": "free",
    }

    check_resp = await credits_client.get("/credits/check", headers=TEST_AUTH_HEADER)
    assert check_resp.status_code == 200
    assert check_resp.json() == {"credits": 0, "tier": "free", "canUseAI": False, "canExport": False}

    use_resp = await credits_client.post("/credits/use", json={}, headers=TEST_AUTH_HEADER)
    assert use_resp.status_code == 402
    detail = use_resp.json()["detail"]
    assert detail["code"] == "insufficient_credits"
    assert detail["required"] == 1
    assert detail["available"] == 0
    assert detail["shortfall"] == 1
    assert await _transactions(session_maker) == []


@pytest.mark.asyncio
async def test_opening_an_account_twice_keeps_the_balance(credits_client, make_account):
    await make_account(TEST_ACCOUNT_ID, credits=7, email="notes@example.com")

    first = await credits_client.post("/accounts", headers=TEST_AUTH_HEADER)
    second = await credits_client.post("/accounts", headers=TEST_AUTH_HEADER)
    assert first.status_code == 200
    assert first.json()["credits"] == 7
    assert second.json()["credits"] == 7

    me = await credits_client.get("/accounts/me", headers=TEST_AUTH_HEADER)
    assert me.status_code == 200
    assert me.json()["id"] == TEST_ACCOUNT_ID


@pytest.mark.asyncio
async def test_use_debits_and_reports_remaining_credits(credits_client, make_account, session_maker):
    await make_account(TEST_ACCOUNT_ID, credits=0)
    async with session_maker() as session:
        await CreditService(session).apply_purchase(TEST_ACCOUNT_ID, "starter")

    use_resp = await credits_client.post(
        "/credits/use",
        json={"amount": 50, "description": "Birthday card for Sam"},
        headers=TEST_AUTH_HEADER,
    )
    assert use_resp.status_code == 200
    assert use_resp.json() == {"success": True, "remainingCredits": 50, "charged": 50, "replayed": False}

    default_resp = await credits_client.post("/credits/use", json={}, headers=TEST_AUTH_HEADER)
    assert default_resp.json()["remainingCredits"] == 49

    rows = await _transactions(session_maker)
    descriptions = sorted(row.description for row in rows if row.type == "usage")
    assert descriptions == ["AI generation", "Birthday card for Sam"]

    check_resp = await credits_client.get("/credits/check", headers=TEST_AUTH_HEADER)
    assert check_resp.json() == {"credits": 49, "tier": "free", "canUseAI": True, "canExport": False}


@pytest.mark.asyncio
async def test_use_validates_amount(credits_client, make_account):
    await make_account(TEST_ACCOUNT_ID, credits=10)

    zero = await credits_client.post("/credits/use", json={"amount": 0}, headers=TEST_AUTH_HEADER)
    assert zero.status_code == 422
    too_many = await credits_client.post(
        "/credits/use",
        json={"amount": settings.MAX_USAGE_AMOUNT + 1},
        headers=TEST_AUTH_HEADER,
    )
    assert too_many.status_code == 422
    text_amount = await credits_client.post("/credits/use", json={"amount": "lots"}, headers=TEST_AUTH_HEADER)
    assert text_amount.status_code == 422


@pytest.mark.asyncio
async def test_premium_use_is_unlimited(credits_client, make_account, session_maker):
    await make_account(TEST_ACCOUNT_ID, tier=AccountTier.PREMIUM)

    use_resp = await credits_client.post("/credits/use", json={"amount": 3}, headers=TEST_AUTH_HEADER)
    assert use_resp.status_code == 200
    assert use_resp.json()["remainingCredits"] == "unlimited"
    assert use_resp.json()["charged"] == 0

    check_resp = await credits_client.get("/credits/check", headers=TEST_AUTH_HEADER)
    assert check_resp.json() == {"credits": 0, "tier": "premium", "canUseAI": True, "canExport": True}
    assert await _transactions(session_maker) == []


@pytest.mark.asyncio
async def test_idempotency_key_replays_use(credits_client, make_account, session_maker):
    await make_account(TEST_ACCOUNT_ID, credits=0)
    async with session_maker() as session:
        await CreditService(session).grant_bonus(TEST_ACCOUNT_ID, 5, "Welcome bonus")

    headers = {**TEST_AUTH_HEADER, "Idempotency-Key": "gen-42"}
    first = await credits_client.post("/credits/use", json={"amount": 2}, headers=headers)
    second = await credits_client.post("/credits/use", json={"amount": 2}, headers=headers)
    assert first.json()["remainingCredits"] == 3
    assert second.json() == {"success": True, "remainingCredits": 3, "charged": 2, "replayed": True}
    assert len([row for row in await _transactions(session_maker) if row.type == "usage"]) == 1


@pytest.mark.asyncio
async def test_packages_are_listed_cheapest_first(credits_client):
    response = await credits_client.get("/credits/packages")
    assert response.status_code == 200
    packages = response.json()["packages"]
    assert [item["id"] for item in packages] == ["starter", "popular", "pro"]
    assert packages[0]["credits"] == 100
    assert packages[0]["price"] == 5.0
    assert packages[1]["isPopular"] is True


@pytest.mark.asyncio
async def test_purchase_rejects_unknown_package(credits_client, make_account, stripe_configured):
    await make_account(TEST_ACCOUNT_ID)

    with patch("stripe.checkout.Session.create") as create_session:
        response = await credits_client.post(
            "/credits/purchase",
            json={"packageId": "nonexistent-package"},
            headers=TEST_AUTH_HEADER,
        )
    assert response.status_code == 400
    assert response.json()["detail"] == {
        "code": "invalid_package",
        "message": "Invalid package.",
        "package_id": "nonexistent-package",
    }
    create_session.assert_not_called()


@pytest.mark.asyncio
async def test_purchase_creates_checkout_session(credits_client, make_account, stripe_configured):
    await make_account(TEST_ACCOUNT_ID)
    fake_session = SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123")

    with patch("stripe.checkout.Session.create", return_value=fake_session) as create_session:
        response = await credits_client.post(
            "/credits/purchase",
            json={"packageId": "starter"},
            headers=TEST_AUTH_HEADER,
        )

    assert response.status_code == 200
    assert response.json() == {"url": fake_session.url, "sessionId": "cs_test_123"}
    kwargs = create_session.call_args.kwargs
    assert kwargs["api_key"] == "sk_test_cards"
    assert kwargs["mode"] == "payment"
    assert kwargs["metadata"] == {"packageId": "starter", "userId": TEST_ACCOUNT_ID}
    assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 500
    assert kwargs["success_url"] == "https://cards.example.com/credits/success?session_id={CHECKOUT_SESSION_ID}"
    assert kwargs["cancel_url"] == "https://cards.example.com/pricing"


@pytest.mark.asyncio
async def test_purchase_unavailable_without_stripe_key(credits_client, make_account, monkeypatch):
    await make_account(TEST_ACCOUNT_ID)
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "")

    response = await credits_client.post("/credits/purchase", json={"packageId": "starter"}, headers=TEST_AUTH_HEADER)
    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "billing_unavailable"


@pytest.mark.asyncio
async def test_confirm_credits_paid_session_once(credits_client, make_account, session_maker, stripe_configured):
    await make_account(TEST_ACCOUNT_ID)
    paid = SimpleNamespace(
        id="cs_test_paid",
        payment_status="paid",
        metadata={"packageId": "starter", "userId": TEST_ACCOUNT_ID},
    )

    with patch("stripe.checkout.Session.retrieve", return_value=paid):
        first = await credits_client.post(
            "/credits/purchase/confirm",
            json={"sessionId": "cs_test_paid"},
            headers=TEST_AUTH_HEADER,
        )
        second = await credits_client.post(
            "/credits/purchase/confirm",
            json={"sessionId": "cs_test_paid"},
            headers=TEST_AUTH_HEADER,
        )

    assert first.status_code == 200
    assert first.json() == {"success": True, "newBalance": 100, "creditsAdded": 100, "replayed": False}
    assert second.json() == {"success": True, "newBalance": 100, "creditsAdded": 100, "replayed": True}

    rows = await _transactions(session_maker)
    assert [(row.type, row.amount, row.request_id) for row in rows] == [("purchase", 100, "stripe:cs_test_paid")]


@pytest.mark.asyncio
async def test_confirm_rejects_unpaid_or_foreign_sessions(credits_client, make_account, session_maker, stripe_configured):
    await make_account(TEST_ACCOUNT_ID)
    unpaid = SimpleNamespace(
        id="cs_test_open",
        payment_status="unpaid",
        metadata={"packageId": "starter", "userId": TEST_ACCOUNT_ID},
    )
    foreign = SimpleNamespace(
        id="cs_test_other",
        payment_status="paid",
        metadata={"packageId": "starter", "userId": "someone-else"},
    )

    with patch("stripe.checkout.Session.retrieve", return_value=unpaid):
        unpaid_resp = await credits_client.post(
            "/credits/purchase/confirm",
            json={"sessionId": "cs_test_open"},
            headers=TEST_AUTH_HEADER,
        )
    with patch("stripe.checkout.Session.retrieve", return_value=foreign):
        foreign_resp = await credits_client.post(
            "/credits/purchase/confirm",
            json={"sessionId": "cs_test_other"},
            headers=TEST_AUTH_HEADER,
        )

    assert unpaid_resp.status_code == 409
    assert unpaid_resp.json()["detail"]["payment_status"] == "unpaid"
    assert foreign_resp.status_code == 409
    assert await _transactions(session_maker) == []


@pytest.mark.asyncio
async def test_transaction_history_is_newest_first(credits_client, make_account, session_maker):
    await make_account(TEST_ACCOUNT_ID)
    async with session_maker() as session:
        service = CreditService(session)
        await service.apply_purchase(TEST_ACCOUNT_ID, "starter")
        await service.consume(TEST_ACCOUNT_ID, 4, "Thank-you note")

    response = await credits_client.get("/credits/transactions?limit=10", headers=TEST_AUTH_HEADER)
    assert response.status_code == 200
    entries = response.json()["transactions"]
    assert [(entry["type"], entry["amount"], entry["balanceAfter"]) for entry in entries] == [
        ("usage", -4, 96),
        ("purchase", 100, 100),
    ]
    assert entries[0]["description"] == "Thank-you note"


@pytest.mark.asyncio
async def test_accounts_me_is_404_before_signup(credits_client):
    response = await credits_client.get("/accounts/me", headers=TEST_AUTH_HEADER)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_accounts_are_created_with_zero_free_balance(credits_client, session_maker):
    response = await credits_client.post("/accounts", headers=TEST_AUTH_HEADER)
    assert response.status_code == 200

    async with session_maker() as session:
        account = (await session.execute(select(Account).where(Account.id == TEST_ACCOUNT_ID))).scalar_one()
    assert account.credits == 0
    assert account.tier == "free"
    assert account.last_login_at is not None


@pytest.mark.asyncio
async def test_account_with_registered_email_is_a_conflict(credits_client, make_account):
    await make_account("earlier-account", email="notes@example.com")

    response = await credits_client.post("/accounts", headers=TEST_AUTH_HEADER)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "account_conflict"


@pytest.mark.asyncio
async def test_storage_failure_on_reads_is_structured(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'no-schema.db'}")
    empty_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with empty_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            check = await client.get("/credits/check", headers=TEST_AUTH_HEADER)
            packages = await client.get("/credits/packages")
    finally:
        app.dependency_overrides.pop(get_db, None)
        await engine.dispose()

    for response in (check, packages):
        assert response.status_code == 500
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()["detail"]["code"] == "storage_unavailable"


@pytest.mark.asyncio
async def test_use_key_cannot_shadow_a_checkout_confirmation(credits_client, make_account, session_maker, stripe_configured):
    await make_account(TEST_ACCOUNT_ID, credits=5)
    headers = {**TEST_AUTH_HEADER, "Idempotency-Key": "stripe:cs_test_paid"}
    used = await credits_client.post("/credits/use", json={"amount": 2}, headers=headers)
    assert used.json()["remainingCredits"] == 3

    paid = SimpleNamespace(
        id="cs_test_paid",
        payment_status="paid",
        metadata={"packageId": "starter", "userId": TEST_ACCOUNT_ID},
    )
    with patch("stripe.checkout.Session.retrieve", return_value=paid):
        confirmed = await credits_client.post(
            "/credits/purchase/confirm",
            json={"sessionId": "cs_test_paid"},
            headers=TEST_AUTH_HEADER,
        )

    assert confirmed.json() == {"success": True, "newBalance": 103, "creditsAdded": 100, "replayed": False}
    rows = sorted((row.type, row.amount, row.request_id) for row in await _transactions(session_maker))
    assert rows == [("purchase", 100, "stripe:cs_test_paid"), ("usage", -2, "use:stripe:cs_test_paid")]


@pytest.mark.asyncio
async def test_confirm_credits_package_retired_after_checkout(credits_client, make_account, session_maker, stripe_configured):
    await make_account(TEST_ACCOUNT_ID)
    async with session_maker() as session:
        package = await session.get(CreditPackage, "starter")
        package.active = False
        await session.commit()

    paid = SimpleNamespace(
        id="cs_test_retired",
        payment_status="paid",
        metadata={"packageId": "starter", "userId": TEST_ACCOUNT_ID},
    )
    with patch("stripe.checkout.Session.retrieve", return_value=paid):
        response = await credits_client.post(
            "/credits/purchase/confirm",
            json={"sessionId": "cs_test_retired"},
            headers=TEST_AUTH_HEADER,
        )

    assert response.status_code == 200
    assert response.json()["creditsAdded"] == 100
