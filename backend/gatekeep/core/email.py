"""Transactional email via the Resend API.

Every send goes through a ResilientDispatcher (timeout, fixed-delay retry,
circuit breaker). A 5xx from Resend is retried; any other response is
handed back to the caller as an EmailReceipt so it can inspect logical
errors. Callers treat delivery as best-effort.
"""

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from gatekeep.core.config import settings
from gatekeep.core.resilience import DispatchPolicy, ResilientDispatcher, UpstreamServerError

_RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class EmailReceipt:
    """Outcome of a send that reached Resend.

    Attributes:
        status_code: HTTP status returned by Resend.
        message_id: Resend message id on success.
        error: Error message from the response body, if any.
    """

    status_code: int
    message_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class EmailClient:
    """Send plain-text email through Resend.

    Args:
        api_key: Resend API key.
        sender: From address.
        dispatcher: Resilience wrapper shared by all sends.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        sender: str,
        *,
        dispatcher: ResilientDispatcher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.sender = sender
        self.dispatcher = dispatcher or ResilientDispatcher("resend.send")
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "EmailClient":
        return cls(
            settings.resend_api_key.get_secret_value(),
            settings.email_from,
            dispatcher=ResilientDispatcher("resend.send", DispatchPolicy.for_email()),
        )

    async def send(self, to: str, subject: str, text: str) -> EmailReceipt:
        """Send one email.

        Args:
            to: Recipient address.
            subject: Subject line.
            text: Plain-text body.

        Returns:
            Receipt for the final response.

        Raises:
            CircuitOpenError: If the breaker is open.
            UpstreamServerError: If Resend kept answering 5xx.
            TimeoutError: If the last attempt timed out.
            httpx.TransportError: If the last attempt failed to connect.
        """
        payload = {"from": self.sender, "to": to, "subject": subject, "text": text}

        async def _post() -> EmailReceipt:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    _RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json=payload,
                )
            body = _json_or_empty(resp)
            if resp.status_code >= 500:
                raise UpstreamServerError(resp.status_code, str(body.get("message", "")))
            return EmailReceipt(
                status_code=resp.status_code,
                message_id=body.get("id"),
                error=body.get("message"),
            )

        return await self.dispatcher.call(_post)


def _json_or_empty(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


# ===================================================================
# Message templates
# ===================================================================


def _humanize(seconds: int) -> str:
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    minutes = max(seconds // 60, 1)
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def verification_email(token: str) -> tuple[str, str]:
    """Subject and body for the email-verification message."""
    link = f"{settings.frontend_url}/verify-email?{urlencode({'token': token}, quote_via=quote)}"
    return (
        "Verify your email address",
        "Please verify your email address by opening this link:\n\n"
        f"{link}\n\nOr submit this token:\n\n{token}\n\n"
        f"This token expires in {_humanize(settings.email_verify_ttl_seconds)}.",
    )


def magic_link_email(token: str) -> tuple[str, str]:
    """Subject and body for the magic-link sign-in message.

    The link hits the backend directly, which sets the session cookie and
    redirects to the frontend.
    """
    params = urlencode({"token": token}, quote_via=quote)
    link = f"{settings.backend_url}/api/v1/auth/magic-link/callback?{params}"
    return (
        "Your sign-in link",
        f"Use this link to sign in:\n\n{link}\n\n"
        f"This link expires in {_humanize(settings.magic_link_ttl_seconds)}. "
        "If you didn't request this, you can safely ignore this email.",
    )


def password_reset_email(token: str) -> tuple[str, str]:
    """Subject and body for the password-reset message."""
    link = f"{settings.frontend_url}/reset-password?{urlencode({'token': token}, quote_via=quote)}"
    return (
        "Reset your password",
        f"Use this link to reset your password:\n\n{link}\n\n"
        f"This link expires in {_humanize(settings.password_reset_ttl_seconds)}. "
        "If you didn't request this, you can safely ignore this email.",
    )
