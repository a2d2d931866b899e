import pytest

from config import settings
from services import ai_tools
from services.templates import seed_templates
from services.providers.types import GenerationResult, ProviderAuthError, ProviderError


def _fake_generation(content="Subject: Quick idea for Acme Dental\n\nHi team,\nLet's talk.", calls=None):
    async def _generate(api_key, messages, **kwargs):
        if calls is not None:
            calls.append({"api_key": api_key, "messages": messages})
        return GenerationResult(content=content, model="test-model")

    return _generate


async def _balance(client, headers):
    resp = await client.get("/credits", headers=headers)
    return resp.json()["credits_balance"]


@pytest.mark.asyncio
async def test_email_generation_charges_and_saves_document(api_client, auth_header, monkeypatch):
    calls = []
    monkeypatch.setattr(ai_tools, "generate_text", _fake_generation(calls=calls))
    headers = auth_header("ai-email-user")

    resp = await api_client.post(
        "/ai/email",
        json={"business_name": "Acme Dental", "contact_name": "Dana", "email_type": "introduction"},
        headers=headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["credits_used"] == settings.DEFAULT_CREDIT_COSTS["ai_email"]
    assert body["new_balance"] == settings.TRIAL_CREDITS - settings.DEFAULT_CREDIT_COSTS["ai_email"]
    assert body["using_own_keys"] is False
    assert body["subject"] == "Quick idea for Acme Dental"
    assert body["document"]["document_type"] == "email"
    assert body["document"]["content"].startswith("Hi team")
    assert calls[0]["api_key"] == "system-generation-key"
    assert "Acme Dental" in calls[0]["messages"][1]["content"]

    documents = await api_client.get("/ai/documents", headers=headers)
    assert documents.json()["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_follow_up_email_uses_its_own_price(api_client, auth_header, monkeypatch):
    monkeypatch.setattr(ai_tools, "generate_text", _fake_generation(content="Just checking in."))
    headers = auth_header("ai-follow-user")

    resp = await api_client.post(
        "/ai/email",
        json={"business_name": "Acme Dental", "email_type": "follow_up", "previous_context": "Sent a proposal"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["credits_used"] == settings.DEFAULT_CREDIT_COSTS["ai_follow_up"]
    assert resp.json()["subject"] == "Email to Acme Dental"


@pytest.mark.asyncio
async def test_validation_errors_cost_nothing(api_client, auth_header, monkeypatch):
    monkeypatch.setattr(ai_tools, "generate_text", _fake_generation())
    headers = auth_header("ai-validation-user")

    missing_name = await api_client.post("/ai/proposal", json={"services": "SEO"}, headers=headers)
    assert missing_name.status_code == 400

    bad_type = await api_client.post(
        "/ai/email", json={"business_name": "Acme", "email_type": "poem"}, headers=headers
    )
    assert bad_type.status_code == 400

    empty_prompt = await api_client.post("/ai/custom", json={"prompt": "  "}, headers=headers)
    assert empty_prompt.status_code == 400

    assert await _balance(api_client, headers) == settings.TRIAL_CREDITS


@pytest.mark.asyncio
async def test_insufficient_credits_returns_402(api_client, auth_header, monkeypatch):
    calls = []
    monkeypatch.setattr(ai_tools, "generate_text", _fake_generation(calls=calls))
    monkeypatch.setattr(settings, "ADMIN_USER_IDS", ["ai-admin"])
    await api_client.put(
        "/credit-costs/ai_proposal",
        json={"credits_required": 5000},
        headers=auth_header("ai-admin"),
    )
    headers = auth_header("ai-poor-user")

    resp = await api_client.post("/ai/proposal", json={"business_name": "Acme Dental"}, headers=headers)
    assert resp.status_code == 402
    detail = resp.json()["detail"]
    assert detail["code"] == "insufficient_credits"
    assert detail["credits_required"] == 5000
    assert detail["current_balance"] == settings.TRIAL_CREDITS
    assert calls == []


@pytest.mark.asyncio
async def test_provider_outage_is_refunded(api_client, auth_header, monkeypatch):
    async def _outage(api_key, messages, **kwargs):
        raise ProviderError("generation", "AI service unavailable", status_code=503)

    monkeypatch.setattr(ai_tools, "generate_text", _outage)
    headers = auth_header("ai-outage-user")

    resp = await api_client.post("/ai/custom", json={"prompt": "Write a tagline"}, headers=headers)
    assert resp.status_code == 502
    assert resp.json()["detail"]["code"] == "provider_error"
    assert await _balance(api_client, headers) == settings.TRIAL_CREDITS

    documents = await api_client.get("/ai/documents", headers=headers)
    assert documents.json()["items"] == []


@pytest.mark.asyncio
async def test_byok_generation_is_free_until_key_is_rejected(api_client, auth_header, monkeypatch):
    seen_keys = []

    async def _generate(api_key, messages, **kwargs):
        seen_keys.append(api_key)
        if len(seen_keys) > 1 and api_key == "user-generation-key":
            raise ProviderAuthError("generation", "OpenAI rejected the API key.", status_code=401)
        return GenerationResult(content="Tagline", model="test-model")

    monkeypatch.setattr(ai_tools, "generate_text", _generate)
    headers = auth_header("ai-byok-user")
    saved = await api_client.post(
        "/api-keys",
        json={"generation_api_key": "user-generation-key", "use_own_keys": True},
        headers=headers,
    )
    assert saved.json()["use_own_keys"] is True

    free = await api_client.post("/ai/custom", json={"prompt": "Write a tagline"}, headers=headers)
    assert free.status_code == 200
    assert free.json()["using_own_keys"] is True
    assert free.json()["credits_used"] == 0
    assert free.json()["document"]["credits_used"] == 0

    rejected = await api_client.post("/ai/custom", json={"prompt": "Write a tagline"}, headers=headers)
    assert rejected.status_code == 400
    assert rejected.json()["detail"]["code"] == "credentials_invalid"

    status = await api_client.get("/api-keys/status", headers=headers)
    assert status.json()["use_own_keys"] is False
    assert status.json()["keys_valid"] is False

    paid = await api_client.post("/ai/custom", json={"prompt": "Write a tagline"}, headers=headers)
    assert paid.status_code == 200
    assert paid.json()["credits_used"] == settings.DEFAULT_CREDIT_COSTS["ai_custom"]
    assert seen_keys == ["user-generation-key", "user-generation-key", "system-generation-key"]


@pytest.mark.asyncio
async def test_documents_can_be_edited_and_deleted(api_client, auth_header, monkeypatch):
    monkeypatch.setattr(ai_tools, "generate_text", _fake_generation(content="Draft proposal"))
    headers = auth_header("ai-docs-user")

    created = await api_client.post(
        "/ai/proposal",
        json={"business_name": "Acme Dental", "sender_company": "Bright Agency"},
        headers=headers,
    )
    document_id = created.json()["document"]["id"]
    assert created.json()["document"]["title"] == "Business Proposal - Acme Dental"

    updated = await api_client.put(
        f"/ai/documents/{document_id}", json={"content": "Final proposal"}, headers=headers
    )
    assert updated.json()["content"] == "Final proposal"

    other_user = await api_client.get(f"/ai/documents/{document_id}", headers=auth_header("someone-else"))
    assert other_user.status_code == 404

    deleted = await api_client.delete(f"/ai/documents/{document_id}", headers=headers)
    assert deleted.json() == {"ok": True}
    gone = await api_client.get(f"/ai/documents/{document_id}", headers=headers)
    assert gone.status_code == 404


def test_split_subject_and_email_pricing():
    subject, body = ai_tools.split_subject("Subject: Hello there\n\nBody text", "fallback")
    assert subject == "Hello there"
    assert body == "Body text"
    assert ai_tools.split_subject("No subject line", "fallback") == ("fallback", "No subject line")
    assert ai_tools.email_action_type("follow_up") == "ai_follow_up"
    assert ai_tools.email_action_type("meeting_request") == "ai_email"


@pytest.mark.asyncio
async def test_lead_owned_by_someone_else_is_rejected_before_charging(api_client, auth_header, monkeypatch):
    calls = []
    monkeypatch.setattr(ai_tools, "generate_text", _fake_generation(calls=calls))
    owner = auth_header("lead-owner")
    intruder = auth_header("lead-intruder")
    lead = await api_client.post("/leads", json={"business_name": "Private Dental"}, headers=owner)
    lead_id = lead.json()["id"]

    resp = await api_client.post(
        "/ai/email",
        json={"lead_id": lead_id, "business_name": "Anything"},
        headers=intruder,
    )
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Lead not found"
    assert calls == []
    assert await _balance(api_client, intruder) == settings.TRIAL_CREDITS

    documents = await api_client.get("/ai/documents", headers=intruder)
    assert documents.json()["items"] == []

    own = await api_client.post(
        "/ai/email",
        json={"lead_id": lead_id, "business_name": "Private Dental"},
        headers=owner,
    )
    assert own.status_code == 200
    assert own.json()["document"]["lead_business_name"] == "Private Dental"
    listed = await api_client.get("/ai/documents", headers=owner)
    assert listed.json()["items"][0]["lead_business_name"] == "Private Dental"


@pytest.mark.asyncio
async def test_failed_document_save_is_refunded(api_client, auth_header, monkeypatch):
    async def _broken_counter(db, user_id, template_name):
        raise RuntimeError("template counter unavailable")

    monkeypatch.setattr(ai_tools, "generate_text", _fake_generation())
    monkeypatch.setattr(ai_tools, "record_template_use", _broken_counter)
    headers = auth_header("ai-save-fail-user")

    with pytest.raises(RuntimeError):
        await api_client.post("/ai/custom", json={"prompt": "Write a tagline"}, headers=headers)

    assert await _balance(api_client, headers) == settings.TRIAL_CREDITS
    history = await api_client.get("/credits/history", params={"action_type": "refund"}, headers=headers)
    assert history.json()["pagination"]["total"] == 1
    documents = await api_client.get("/ai/documents", headers=headers)
    assert documents.json()["items"] == []


@pytest.mark.asyncio
async def test_templates_are_listed_created_and_counted(api_client, auth_header, session_maker, monkeypatch):
    async with session_maker() as session:
        assert await seed_templates(session) == 3
    async with session_maker() as session:
        assert await seed_templates(session) == 0

    monkeypatch.setattr(ai_tools, "generate_text", _fake_generation())
    headers = auth_header("template-user")

    system = await api_client.get("/ai/templates", params={"template_type": "email"}, headers=headers)
    assert [item["name"] for item in system.json()["items"]] == ["Cold introduction", "Gentle follow-up"]
    assert all(item["is_system"] for item in system.json()["items"])

    missing = await api_client.post("/ai/templates", json={"template_type": "email", "name": "x"}, headers=headers)
    assert missing.status_code == 400

    created = await api_client.post(
        "/ai/templates",
        json={"template_type": "email", "name": "My pitch", "content": "Hi {{business_name}}"},
        headers=headers,
    )
    assert created.status_code == 201
    assert created.json()["is_system"] is False

    other = await api_client.get("/ai/templates", headers=auth_header("template-other"))
    assert "My pitch" not in [item["name"] for item in other.json()["items"]]

    resp = await api_client.post(
        "/ai/email",
        json={"business_name": "Acme Dental", "template_name": "Cold introduction"},
        headers=headers,
    )
    assert resp.json()["document"]["template_name"] == "Cold introduction"

    listed = await api_client.get("/ai/templates", params={"template_type": "email"}, headers=headers)
    usage = {item["name"]: item["usage_count"] for item in listed.json()["items"]}
    assert usage == {"Cold introduction": 1, "Gentle follow-up": 0, "My pitch": 0}
