import pytest
import requests

from notifications import telegram
from warehouse.errors import BatchReport


class FakeResponse:
    def __init__(self, ok=True, status_code=200, text="{}"):
        self.ok = ok
        self.status_code = status_code
        self.text = text


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")


def test_message_is_sent_to_configured_chat(monkeypatch, configured):
    calls = []

    def fake_get(url, params=None, timeout=None):
        calls.append((url, params, timeout))
        return FakeResponse()

    monkeypatch.setattr(requests, "get", fake_get)

    telegram.send_telegram_message("hi")

    assert calls == [("https://api.telegram.org/bot123:abc/sendMessage", {"chat_id": "42", "text": "hi"}, 10)]


def test_http_error_raises(monkeypatch, configured):
    monkeypatch.setattr(requests, "get", lambda *a, **kw: FakeResponse(False, 401, "Unauthorized"))

    with pytest.raises(RuntimeError, match="401"):
        telegram.send_telegram_message("hi")


def test_missing_credentials_raise(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)

    with pytest.raises(RuntimeError, match="not set"):
        telegram.send_telegram_message("hi")


def test_format_summary():
    class Summary:
        batch_id = 20240101
        rejected = 1

        def lines(self):
            report = BatchReport("facts:sales")
            report.accept(2)
            return [report.summary()]

    text = telegram.format_summary(Summary())

    assert text.splitlines()[0] == "📦 Batch 20240101: 1 rejected rows"
    assert text.splitlines()[1].startswith("• facts:sales")
