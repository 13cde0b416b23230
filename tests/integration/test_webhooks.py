import asyncio

from fastapi.testclient import TestClient

from omnichannel.channels.sms import twilio_signature
from omnichannel.runtime import Runtime

SMS_URL = "https://inbox.example.com/webhooks/twilio/sms"


def test_healthz_lists_channels(client: TestClient) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert "webchat" in body["channels"]
    assert len(body["channels"]) == 10


def test_meta_hub_verification(client: TestClient) -> None:
    params = {"hub.mode": "subscribe", "hub.challenge": "12345"}

    ok = client.get(
        "/webhooks/messenger", params={**params, "hub.verify_token": "test-verify-token"}
    )
    bad = client.get("/webhooks/instagram", params={**params, "hub.verify_token": "wrong"})

    assert ok.status_code == 200
    assert ok.text == "12345"
    assert bad.status_code == 403


def test_webchat_message_is_stored(
    client: TestClient, runtime: Runtime, widget_token: str
) -> None:
    response = client.post(
        "/webhooks/webchat",
        json={
            "token": widget_token,
            "eventType": "message",
            "data": {"sessionId": "ses_1", "message": "Do you ship to Lisbon?"},
        },
    )

    assert response.status_code == 200
    [message_id] = response.json()["messages"]
    message = asyncio.run(runtime.storage.get_message_by_id(message_id))
    assert message.content == "Do you ship to Lisbon?"
    assert runtime.webchat.sessions.get("ses_1") is not None


def test_webchat_rejects_bad_token_and_wrong_company(client: TestClient, widget_token: str) -> None:
    payload = {"eventType": "message", "data": {"sessionId": "ses_1", "message": "hi"}}

    invalid = client.post("/webhooks/webchat", json={**payload, "token": "nope"})
    wrong = client.post(
        "/webhooks/webchat", json={**payload, "token": widget_token, "companyId": "co_2"}
    )
    missing_session = client.post(
        "/webhooks/webchat", json={"token": widget_token, "eventType": "message", "data": {}}
    )

    assert invalid.status_code == 401
    assert invalid.json()["error"] == "Invalid token"
    assert wrong.status_code == 403
    assert missing_session.status_code == 400


def test_invalid_json_body(client: TestClient) -> None:
    response = client.post(
        "/webhooks/tiktok", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400


def test_form_body_that_is_not_utf8_is_rejected(client: TestClient) -> None:
    headers = {"Content-Type": "application/x-www-form-urlencoded"}
    body = b"EventType=onMessageAdded&Body=\xff\xfe"

    whatsapp = client.post("/webhooks/twilio/whatsapp", content=body, headers=headers)
    sms = client.post("/webhooks/twilio/sms", content=body, headers=headers)

    assert whatsapp.status_code == 400
    assert sms.status_code == 400


def test_sms_signature_enforced(client: TestClient) -> None:
    form = {
        "MessageSid": "SM_IN_1",
        "SmsStatus": "received",
        "From": "+15551234567",
        "To": "+15550009999",
        "Body": "hello",
        "NumMedia": "0",
    }

    rejected = client.post(
        "/webhooks/twilio/sms", data=form, headers={"X-Twilio-Signature": "forged"}
    )
    accepted = client.post(
        "/webhooks/twilio/sms",
        data=form,
        headers={"X-Twilio-Signature": twilio_signature("sms-token", SMS_URL, form)},
    )

    assert rejected.status_code == 403
    assert accepted.status_code == 200
    assert accepted.headers["content-type"].startswith("application/xml")
    assert "<Response></Response>" in accepted.text


def test_email_webhook_requires_secret(client: TestClient, runtime: Runtime) -> None:
    runtime.settings.email_inbound_secret = "mail-secret"
    payload = {"to": "support@example.com", "from": "grace@example.com", "text": "hi"}

    denied = client.post("/webhooks/email", json=payload)
    allowed = client.post(
        "/webhooks/email", json=payload, headers={"X-Email-Secret": "mail-secret"}
    )

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json()["messages"] == []


def test_baileys_webhook_requires_api_key(client: TestClient, runtime: Runtime) -> None:
    runtime.settings.baileys_api_key = "sidecar-key"

    denied = client.post("/webhooks/whatsapp", json={"event": "messages.upsert"})
    allowed = client.post(
        "/webhooks/whatsapp",
        json={"event": "messages.upsert", "sessionId": "chn_unknown"},
        headers={"X-Api-Key": "sidecar-key"},
    )

    assert denied.status_code == 401
    assert allowed.status_code == 200
