"""
Tests for the SMS and email transport.
"""

import json

import httpx
import pytest

from sunny.exceptions import MessagingError
from sunny.messaging import MessagingConfig, Messenger, body_to_html

FULL_CONFIG = MessagingConfig(
    twilio_account_sid="AC123",
    twilio_auth_token="secret",
    twilio_phone_number="+15550000",
    resend_api_key="re_123",
    resend_from_email="studio@example.com",
)


def _messenger(handler, config=FULL_CONFIG):
    return Messenger(config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestMessagingConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC1")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "tok")
        monkeypatch.delenv("TWILIO_PHONE_NUMBER", raising=False)
        monkeypatch.setenv("RESEND_API_KEY", "re")
        monkeypatch.setenv("RESEND_FROM_EMAIL", "a@b.c")

        config = MessagingConfig.from_env()
        assert not config.sms_configured
        assert config.email_configured

    def test_body_to_html_escapes(self):
        html = body_to_html("Hi <b>Maya</b>\nSee you soon")
        assert html.count("<p ") == 2
        assert "&lt;b&gt;Maya&lt;/b&gt;" in html


class TestMessenger:
    @pytest.mark.asyncio
    async def test_sms_uses_twilio_form_post(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = request.content.decode()
            seen["auth"] = request.headers.get("authorization", "")
            return httpx.Response(201, json={"sid": "SM1"})

        assert await _messenger(handler).send_sms("+15551234", "Hello!") is True
        assert seen["url"] == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        assert "To=%2B15551234" in seen["body"]
        assert seen["auth"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_email_uses_resend(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["json"] = json.loads(request.content)
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, json={"id": "em_1"})

        sent = await _messenger(handler).send("email", "maya@example.com", "Line 1\nLine 2", "Thanks!")
        assert sent is True
        assert seen["url"] == "https://api.resend.com/emails"
        assert seen["auth"] == "Bearer re_123"
        assert seen["json"]["subject"] == "Thanks!"
        assert seen["json"]["from"] == "studio@example.com"
        assert seen["json"]["html"].count("<p ") == 2

    @pytest.mark.asyncio
    async def test_unconfigured_channel_is_skipped(self):
        def handler(request):
            raise AssertionError("no request expected")

        messenger = _messenger(handler, config=MessagingConfig())
        assert await messenger.send("sms", "+1555", "hi") is False
        assert await messenger.send("email", "a@b.c", "hi", "s") is False

    @pytest.mark.asyncio
    async def test_provider_error_raises(self):
        def handler(request):
            return httpx.Response(400, json={"message": "invalid number"})

        with pytest.raises(MessagingError) as exc:
            await _messenger(handler).send_sms("bad", "hi")
        assert exc.value.channel == "sms"
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(MessagingError):
            await _messenger(handler).send_email("a@b.c", "s", "hi")

    @pytest.mark.asyncio
    async def test_unknown_channel(self):
        with pytest.raises(MessagingError):
            await _messenger(lambda r: httpx.Response(200)).send("pigeon", "x", "hi")
