import pytest

from config import settings
from routers.errors import credit_http_error
from services.credit_types import CreditError, TransientStoreError


ADMIN_USER_ID = "pricing-admin"


@pytest.mark.asyncio
async def test_requests_without_session_token_are_rejected(api_client):
    resp = await api_client.get("/credits")
    assert resp.status_code == 401

    resp = await api_client.get("/credits", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_first_access_creates_trial_wallet(api_client, auth_header):
    headers = auth_header("api-credits-user")
    resp = await api_client.get("/credits", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["credits_balance"] == settings.TRIAL_CREDITS
    assert body["is_trial"] is True
    assert body["trial_credits_given"] is True
    assert body["total_transactions"] == 1

    again = await api_client.get("/credits", headers=headers)
    assert again.json()["total_transactions"] == 1

    history = await api_client.get("/credits/history", headers=headers)
    assert history.status_code == 200
    items = history.json()["items"]
    assert len(items) == 1
    assert items[0]["action_type"] == "trial"
    assert items[0]["transaction_type"] == "credit"


@pytest.mark.asyncio
async def test_check_action_reports_price_and_unknown_actions(api_client, auth_header):
    headers = auth_header("api-check-user")
    resp = await api_client.get("/credits/check/ai_email", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {
        "allowed": True,
        "reason": None,
        "credits_required": 20,
        "current_balance": settings.TRIAL_CREDITS,
        "using_own_keys": False,
    }

    unknown = await api_client.get("/credits/check/time_travel", headers=headers)
    assert unknown.status_code == 200
    assert unknown.json()["allowed"] is False
    assert unknown.json()["reason"] == "unknown_action"


@pytest.mark.asyncio
async def test_credit_costs_are_public_and_admin_editable(api_client, auth_header, monkeypatch):
    listing = await api_client.get("/credit-costs")
    assert listing.status_code == 200
    costs = {item["action_type"]: item["credits_required"] for item in listing.json()["items"]}
    assert costs == settings.DEFAULT_CREDIT_COSTS

    forbidden = await api_client.put(
        "/credit-costs/ai_email",
        json={"credits_required": 25},
        headers=auth_header("regular-user"),
    )
    assert forbidden.status_code == 403

    monkeypatch.setattr(settings, "ADMIN_USER_IDS", [ADMIN_USER_ID])
    updated = await api_client.put(
        "/credit-costs/ai_email",
        json={"credits_required": 25, "description": "Outreach email"},
        headers=auth_header(ADMIN_USER_ID),
    )
    assert updated.status_code == 200
    assert updated.json()["credits_required"] == 25

    check = await api_client.get("/credits/check/ai_email", headers=auth_header("regular-user"))
    assert check.json()["credits_required"] == 25

    negative = await api_client.put(
        "/credit-costs/ai_email",
        json={"credits_required": -1},
        headers=auth_header(ADMIN_USER_ID),
    )
    assert negative.status_code == 422


@pytest.mark.asyncio
async def test_reconcile_endpoint_reports_consistency(api_client, auth_header):
    headers = auth_header("api-reconcile-user")
    await api_client.get("/credits", headers=headers)
    resp = await api_client.get("/credits/reconcile", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["consistent"] is True
    assert resp.json()["replayed_balance"] == settings.TRIAL_CREDITS


@pytest.mark.asyncio
async def test_byok_key_lifecycle(api_client, auth_header):
    headers = auth_header("api-byok-user")

    status = await api_client.get("/api-keys/status", headers=headers)
    assert status.status_code == 200
    assert status.json()["use_own_keys"] is False

    no_keys = await api_client.post("/api-keys/toggle-byok", json={"enabled": True}, headers=headers)
    assert no_keys.status_code == 400
    assert no_keys.json()["detail"]["code"] == "byok_configuration"

    bad_key = await api_client.post(
        "/api-keys",
        json={"places_api_key": "typo", "use_own_keys": True},
        headers=headers,
    )
    assert bad_key.status_code == 400
    assert bad_key.json()["detail"]["code"] == "credentials_invalid"
    assert bad_key.json()["detail"]["providers"] == ["places"]

    saved = await api_client.post(
        "/api-keys",
        json={"places_api_key": "user-places-key", "generation_api_key": "user-generation-key", "use_own_keys": True},
        headers=headers,
    )
    assert saved.status_code == 200
    assert saved.json()["ok"] is True
    assert saved.json()["use_own_keys"] is True
    assert saved.json()["keys_valid"] is True

    check = await api_client.get("/credits/check/seo_analysis", headers=headers)
    assert check.json()["using_own_keys"] is True

    verified = await api_client.post("/api-keys/verify", headers=headers)
    assert verified.status_code == 200
    assert verified.json()["switched_to_credits"] is False

    disabled = await api_client.post("/api-keys/toggle-byok", json={"enabled": False}, headers=headers)
    assert disabled.json()["use_own_keys"] is False
    assert disabled.json()["has_places_key"] is True

    removed = await api_client.post("/api-keys/remove", json={"key_type": "all"}, headers=headers)
    assert removed.status_code == 200
    assert removed.json()["has_places_key"] is False
    assert removed.json()["has_generation_key"] is False


@pytest.mark.asyncio
async def test_liveness_and_root(api_client):
    live = await api_client.get("/health/live")
    assert live.json() == {"alive": True}

    root = await api_client.get("/")
    assert root.json()["name"] == "Lead Outreach API"


def test_retryable_errors_map_to_503_with_retry_after():
    transient = credit_http_error(TransientStoreError("database is locked"))
    assert transient.status_code == 503
    assert transient.headers == {"Retry-After": "1"}
    assert transient.detail["code"] == "temporarily_unavailable"

    generic = credit_http_error(CreditError("ledger invariant broken"))
    assert generic.status_code == 500
