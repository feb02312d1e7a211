import resend

import mailer
from mailer import send_email


def test_send_email_through_resend(monkeypatch):
    sent = []

    def fake_send(payload):
        sent.append(payload)
        return {"id": "email-1"}

    monkeypatch.setattr(mailer, "RESEND_API_KEY", "re_test")
    monkeypatch.setattr(resend.Emails, "send", fake_send)

    assert send_email("alice@example.com", "Hi", "plain", "<p>html</p>") is True
    assert sent[0]["to"] == ["alice@example.com"]
    assert sent[0]["subject"] == "Hi"
    assert sent[0]["html"] == "<p>html</p>"


def test_send_email_without_key_is_dropped(monkeypatch):
    monkeypatch.setattr(mailer, "RESEND_API_KEY", "")
    assert send_email("alice@example.com", "Hi", "plain") is False


def test_send_email_failure_returns_false(monkeypatch):
    def broken(payload):
        raise RuntimeError("resend down")

    monkeypatch.setattr(mailer, "RESEND_API_KEY", "re_test")
    monkeypatch.setattr(resend.Emails, "send", broken)
    assert send_email("alice@example.com", "Hi", "plain") is False

    monkeypatch.setattr(resend.Emails, "send", lambda payload: {"message": "invalid from"})
    assert send_email("alice@example.com", "Hi", "plain") is False
