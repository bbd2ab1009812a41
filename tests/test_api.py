from app.core.deps import get_completion_provider
from app.core.errors import ProviderError
from app.core.security import create_access_token
from app.services.chat_service import FALLBACK_MESSAGE
from app.services.completion import CompletionProvider
from tests.helpers import paid_billing, set_usage


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_without_token_are_rejected(client):
    response = client.get("/api/chats")

    assert response.status_code == 401


def test_requests_with_bad_signature_are_rejected(client, user, test_settings):
    forged = test_settings.model_copy(update={"JWT_SECRET": "someone-elses-secret-key-also-long-enough"})
    token = create_access_token(user.id, user.email, forged)

    response = client.get("/api/chats", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_send_list_read_delete_roundtrip(client, auth_headers, completion):
    sent = client.post(
        "/api/chats/messages",
        json={"message": "I love playing guitar and painting"},
        headers=auth_headers,
    )
    assert sent.status_code == 200
    body = sent.json()
    assert body["title"] == "Love Playing Guitar"
    assert body["message"]["role"] == "assistant"
    assert body["message"]["content"] == completion.reply
    assert body["fell_back"] is False
    assert body["quota"]["daily_message_count"] == 1
    chat_id = body["chat_id"]

    listed = client.get("/api/chats", headers=auth_headers).json()
    assert [c["id"] for c in listed] == [chat_id]

    detail = client.get(f"/api/chats/{chat_id}/messages", headers=auth_headers).json()
    assert [m["role"] for m in detail["messages"]] == ["user", "assistant"]

    assert client.delete(f"/api/chats/{chat_id}", headers=auth_headers).status_code == 204
    assert client.get(f"/api/chats/{chat_id}/messages", headers=auth_headers).status_code == 404


def test_send_into_existing_chat(client, auth_headers, completion):
    created = client.post("/api/chats", headers=auth_headers)
    assert created.status_code == 201
    chat_id = created.json()["id"]

    response = client.post(
        "/api/chats/messages",
        json={"chat_id": chat_id, "message": "Plan a weekend in Porto"},
        headers=auth_headers,
    )

    assert response.json()["chat_id"] == chat_id
    assert response.json()["title"] == "Plan Weekend Porto"


def test_send_reports_fallback_notice(client, auth_headers, completion):
    completion.error = ProviderError("gateway down")

    body = client.post("/api/chats/messages", json={"message": "hello there"}, headers=auth_headers).json()

    assert body["fell_back"] is True
    assert body["message"]["content"] == FALLBACK_MESSAGE
    assert body["notice"]


def test_send_over_quota_is_429(client, auth_headers, session, quota, user):
    quota.increment_usage(user)
    set_usage(session, user.email, 100)

    response = client.post("/api/chats/messages", json={"message": "hello there"}, headers=auth_headers)

    assert response.status_code == 429
    assert "daily limit of 100" in response.json()["detail"]


def test_send_empty_message_is_400(client, auth_headers):
    response = client.post("/api/chats/messages", json={"message": "  "}, headers=auth_headers)

    assert response.status_code == 400


def test_rename_and_search(client, auth_headers):
    chat_id = client.post("/api/chats", headers=auth_headers).json()["id"]
    client.post("/api/chats", headers=auth_headers)

    renamed = client.patch(f"/api/chats/{chat_id}", json={"title": "Kyoto Notes"}, headers=auth_headers)
    assert renamed.json()["title"] == "Kyoto Notes"

    found = client.get("/api/chats", params={"q": "kyoto"}, headers=auth_headers).json()
    assert [c["id"] for c in found] == [chat_id]


def test_chat_function_returns_message_and_counts(client, auth_headers, completion, quota, user):
    response = client.post(
        "/functions/v1/chat",
        json={
            "message": "And in French?",
            "messages": [
                {"role": "user", "content": "Say hello"},
                {"role": "assistant", "content": "Hello!"},
            ],
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json() == {"message": completion.reply}
    assert response.headers["access-control-allow-origin"] == "*"
    _, prior, text = completion.calls[0]
    assert prior == [
        {"role": "user", "content": "Say hello"},
        {"role": "assistant", "content": "Hello!"},
    ]
    assert text == "And in French?"
    assert quota.check_quota(user).count == 1


def test_chat_function_provider_failure(client, auth_headers, completion):
    completion.error = ProviderError("Failed to get response from AI", "status 502")

    response = client.post("/functions/v1/chat", json={"message": "hi"}, headers=auth_headers)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to process chat request", "details": "status 502"}


def test_chat_function_requires_token(client):
    response = client.post("/functions/v1/chat", json={"message": "hi"})

    assert response.status_code == 401
    assert response.json()["error"] == "No authorization header provided"


def test_check_subscription(client, auth_headers, billing):
    paid = paid_billing(800)
    billing.customer_id = paid.customer_id
    billing.subscription = paid.subscription
    billing.amount = paid.amount

    response = client.post("/functions/v1/check-subscription", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {
        "subscribed": True,
        "subscription_tier": "Pro Plus",
        "subscription_end": "2026-11-19T12:00:00.000Z",
        "daily_message_count": 0,
        "daily_message_limit": 500,
    }


def test_check_subscription_billing_failure(client, auth_headers, billing):
    billing.error = ProviderError("Billing provider error during customer lookup")

    response = client.post("/functions/v1/check-subscription", headers=auth_headers)

    assert response.status_code == 500
    assert response.json() == {"error": "Billing provider error during customer lookup"}


def test_create_checkout_and_portal(client, auth_headers, billing):
    billing.customer_id = "cus_9"

    checkout = client.post("/functions/v1/create-checkout", json={"plan": "Plus"}, headers=auth_headers)
    portal = client.post("/functions/v1/customer-portal", headers=auth_headers)

    assert checkout.json() == {"url": "https://checkout.example.test/session"}
    assert portal.json() == {"url": "https://billing.example.test/portal"}
    assert billing.checkouts[0]["amount"] == 500


def test_preflight_has_empty_body_and_cors_headers(client):
    browser_preflight = {
        "Origin": "https://hydrachat.example.test",
        "Access-Control-Request-Method": "POST",
        "Access-Control-Request-Headers": "authorization, content-type",
    }
    for name in ("chat", "check-subscription"):
        response = client.options(f"/functions/v1/{name}", headers=browser_preflight)

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"
        assert "authorization" in response.headers["access-control-allow-headers"]


def test_rest_api_preflight_still_handled_by_cors_middleware(client):
    response = client.options(
        "/api/chats",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "GET"},
    )

    assert response.status_code == 200
    assert "access-control-allow-origin" in response.headers


def test_chat_function_without_completion_key_does_not_count(client, auth_headers, quota, user, test_settings):
    unkeyed = test_settings.model_copy(update={"OPENROUTER_API_KEY": ""})
    client.app.dependency_overrides[get_completion_provider] = lambda: CompletionProvider(unkeyed)

    response = client.post("/functions/v1/chat", json={"message": "hi"}, headers=auth_headers)

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to process chat request",
        "details": "OpenRouter API key not configured",
    }
    assert quota.check_quota(user).count == 0
