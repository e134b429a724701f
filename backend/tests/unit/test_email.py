"""Tests for the Resend email client and message templates."""

import json

import httpx
import pytest

from gatekeep.core.config import settings
from gatekeep.core.email import (
    EmailClient,
    magic_link_email,
    password_reset_email,
    verification_email,
)
from gatekeep.core.resilience import (
    CircuitOpenError,
    DispatchPolicy,
    ResilientDispatcher,
    UpstreamServerError,
)
from tests.conftest import token_from_email

_FAST_POLICY = DispatchPolicy(max_attempts=3, backoff_seconds=0, failure_threshold=1)


def _client(handler, policy: DispatchPolicy = _FAST_POLICY) -> EmailClient:
    return EmailClient(
        "re_test_key",
        "noreply@example.com",
        dispatcher=ResilientDispatcher("resend.send", policy),
        transport=httpx.MockTransport(handler),
    )


# ===================================================================
# EmailClient.send
# ===================================================================


class TestSend:
    """Tests for EmailClient.send()."""

    async def test_posts_payload_with_bearer_key(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "msg_123"})

        receipt = await _client(handler).send("bob@example.com", "Hi", "Body")

        assert receipt.ok
        assert receipt.message_id == "msg_123"
        request = seen[0]
        assert str(request.url) == "https://api.resend.com/emails"
        assert request.headers["Authorization"] == "Bearer re_test_key"
        assert json.loads(request.content) == {
            "from": "noreply@example.com",
            "to": "bob@example.com",
            "subject": "Hi",
            "text": "Body",
        }

    async def test_client_error_is_returned_not_retried(self):
        """A 4xx is a logical failure the caller inspects."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(422, json={"message": "Invalid `to` field"})

        receipt = await _client(handler).send("bad", "Hi", "Body")

        assert calls == 1
        assert not receipt.ok
        assert receipt.status_code == 422
        assert receipt.error == "Invalid `to` field"

    async def test_server_error_is_retried(self):
        responses = [httpx.Response(503), httpx.Response(200, json={"id": "msg_2"})]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        receipt = await _client(handler).send("bob@example.com", "Hi", "Body")
        assert receipt.message_id == "msg_2"

    async def test_persistent_server_error_raises_and_opens_breaker(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500, text="oops")

        client = _client(handler)
        with pytest.raises(UpstreamServerError):
            await client.send("bob@example.com", "Hi", "Body")
        assert calls == 3

        with pytest.raises(CircuitOpenError):
            await client.send("bob@example.com", "Hi", "Body")
        assert calls == 3

    async def test_non_json_body_is_tolerated(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="accepted")

        receipt = await _client(handler).send("bob@example.com", "Hi", "Body")
        assert receipt.ok
        assert receipt.message_id is None


# ===================================================================
# Templates
# ===================================================================


class TestTemplates:
    """Subjects, links, and lifetimes in message bodies."""

    def test_verification_email_links_to_frontend(self):
        subject, text = verification_email("tok_abc-123")
        assert subject == "Verify your email address"
        assert f"{settings.frontend_url}/verify-email?token=tok_abc-123" in text
        assert "24 hours" in text
        assert token_from_email(text) == "tok_abc-123"

    def test_magic_link_hits_backend_callback(self):
        _subject, text = magic_link_email("tok")
        assert f"{settings.backend_url}/api/v1/auth/magic-link/callback?token=tok" in text
        assert "15 minutes" in text

    def test_password_reset_links_to_frontend(self):
        subject, text = password_reset_email("tok")
        assert subject == "Reset your password"
        assert f"{settings.frontend_url}/reset-password?token=tok" in text
        assert "1 hour" in text
