from __future__ import annotations

import pytest

from linkvault.services.notifications import mailer
from linkvault.services.notifications.mailer import OutboundEmail, send_email


class _FakeSMTP:
    instances: list["_FakeSMTP"] = []

    def __init__(self, host, port, timeout=None) -> None:
        self.host = host
        self.port = port
        self.logged_in: tuple[str, str] | None = None
        self.sent = []
        _FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def login(self, username, password) -> None:
        self.logged_in = (username, password)

    def send_message(self, message) -> None:
        self.sent.append(message)


@pytest.mark.asyncio
async def test_send_email_uses_ssl_relay_with_credentials(monkeypatch) -> None:
    _FakeSMTP.instances = []
    monkeypatch.setattr(mailer.smtplib, "SMTP_SSL", _FakeSMTP)

    await send_email(OutboundEmail(to="owner@example.com", subject="Hello", body="Body text"))

    assert len(_FakeSMTP.instances) == 1
    client = _FakeSMTP.instances[0]
    assert client.host == "smtp.test.invalid"
    assert client.port == 465
    assert client.logged_in == ("mailer", "mailer-password")
    sent = client.sent[0]
    assert sent["To"] == "owner@example.com"
    assert sent["Subject"] == "Hello"
    assert sent.get_content().strip() == "Body text"


@pytest.mark.asyncio
async def test_send_email_propagates_relay_errors(monkeypatch) -> None:
    class _BrokenSMTP(_FakeSMTP):
        def send_message(self, message) -> None:
            raise OSError("relay down")

    monkeypatch.setattr(mailer.smtplib, "SMTP_SSL", _BrokenSMTP)

    with pytest.raises(OSError, match="relay down"):
        await send_email(OutboundEmail(to="owner@example.com", subject="Hello", body="Body"))
