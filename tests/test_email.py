import json

import httpx

from resident_messaging.services import email as email_service


def test_local_backend_writes_html_file(monkeypatch, tmp_path):
    monkeypatch.setattr(email_service.settings, "email_backend", "local")
    monkeypatch.setattr(email_service.settings, "email_output_dir", str(tmp_path))

    result = email_service.send_mail(["resident@example.com"], "SPR-HOA: Pool closed", "<p>Closed</p>")

    assert result.accepted
    assert result.backend == "local"
    assert result.recipient_count == 1
    files = list(tmp_path.glob("*.html"))
    assert len(files) == 1
    contents = files[0].read_text()
    assert "<!-- Recipients: resident@example.com -->" in contents
    assert "<p>Closed</p>" in contents


def test_send_mail_without_recipients_is_rejected(monkeypatch, tmp_path):
    monkeypatch.setattr(email_service.settings, "email_output_dir", str(tmp_path))

    result = email_service.send_mail(["", "   "], "Subject", "<p>Body</p>")

    assert not result.accepted
    assert result.error == "No recipients provided."
    assert list(tmp_path.iterdir()) == []


def test_normalize_recipients_dedupes_case_insensitively():
    assert email_service.normalize_recipients(
        [" A@example.com", "a@example.com", None, "b@example.com"]
    ) == ["A@example.com", "b@example.com"]


def test_resolve_sender_accepts_display_name_override(monkeypatch):
    monkeypatch.setattr(email_service.settings, "email_from_address", "office@example.com")

    assert email_service.resolve_sender("SPR Admin <admin@example.com>") == ("admin@example.com", "SPR Admin")
    assert email_service.resolve_sender() == ("office@example.com", "Sandpiper Run HOA")


def test_resend_backend_posts_to_api(monkeypatch):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "re_123"})

    monkeypatch.setattr(email_service.settings, "email_backend", "resend")
    monkeypatch.setattr(email_service.settings, "resend_api_key", "re_test_key")
    monkeypatch.setattr(email_service.settings, "email_from_address", "noreply@example.com")
    monkeypatch.setattr(
        email_service,
        "_resend_client",
        lambda: httpx.Client(transport=httpx.MockTransport(handler)),
    )

    result = email_service.send_mail(
        ["one@example.com", "two@example.com"],
        "SPR-HOA: Notice",
        "<p>Hi</p>",
        "SPR Admin <noreply@example.com>",
    )

    assert result.accepted
    assert result.backend == "resend"
    assert result.request_id == "re_123"
    assert captured["url"] == "https://api.resend.com/emails"
    assert captured["auth"] == "Bearer re_test_key"
    assert captured["payload"]["from"] == "SPR Admin <noreply@example.com>"
    assert captured["payload"]["to"] == ["one@example.com", "two@example.com"]
    assert captured["payload"]["html"] == "<p>Hi</p>"


def test_resend_error_response_is_reported(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "Invalid from address"})

    monkeypatch.setattr(email_service.settings, "email_backend", "resend")
    monkeypatch.setattr(email_service.settings, "resend_api_key", "re_test_key")
    monkeypatch.setattr(
        email_service,
        "_resend_client",
        lambda: httpx.Client(transport=httpx.MockTransport(handler)),
    )

    result = email_service.send_mail(["one@example.com"], "Subject", "<p>Hi</p>")

    assert not result.accepted
    assert result.status_code == 422
    assert "Invalid from address" in result.error


def test_resend_backend_without_key_returns_error(monkeypatch):
    monkeypatch.setattr(email_service.settings, "email_backend", "resend")
    monkeypatch.setattr(email_service.settings, "resend_api_key", None)

    result = email_service.send_mail(["one@example.com"], "Subject", "<p>Hi</p>")

    assert not result.accepted
    assert "RESEND_API_KEY" in result.error


def test_sendgrid_backend_sends_html_content(monkeypatch):
    sent = []

    class FakeSendGridClient:
        def __init__(self, api_key):
            self.api_key = api_key

        def send(self, message):
            sent.append(message)

            class Response:
                status_code = 202
                headers = {"X-Message-Id": "sg-123"}

            return Response()

    monkeypatch.setattr(email_service.settings, "email_backend", "sendgrid")
    monkeypatch.setattr(email_service.settings, "sendgrid_api_key", "SG.test")
    monkeypatch.setattr(email_service.settings, "email_from_address", "noreply@example.com")
    monkeypatch.setattr(email_service, "SendGridAPIClient", FakeSendGridClient)

    result = email_service.send_mail(["one@example.com"], "SPR-HOA: Notice", "<p>Hi</p>")

    assert result.accepted
    assert result.backend == "sendgrid"
    assert result.request_id == "sg-123"
    assert len(sent) == 1
    mail = sent[0].get()
    assert mail["subject"] == "SPR-HOA: Notice"
    assert mail["content"][0]["type"] == "text/html"
    assert mail["from"]["email"] == "noreply@example.com"
