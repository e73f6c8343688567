"""
Charity notification emails, sent through the Resend HTTP API.

When a token is launched in a charity's name, the charity gets an email with the
token details and a link to the charity portal where it can endorse or reject
the token. Delivery problems never fail a launch: every outcome is returned as
an EmailResult.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape
from mcp.server.fastmcp.utilities.logging import get_logger
from pydantic import BaseModel

from .config import DEFAULT_APP_URL, DEFAULT_EMAIL_FROM, Settings

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
CONTACT_EMAIL = "contact@master22solutions.com"

TEMPLATES_DIR = Path(__file__).parent / "templates"
templates = Environment(loader=FileSystemLoader(TEMPLATES_DIR), autoescape=select_autoescape(["html"]))


class CharityNotification(BaseModel):
    charity_name: str
    charity_email: str
    token_name: str
    token_symbol: str
    token_mint_address: str
    creator_wallet: str
    approval_link: str


class EmailResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def approval_link(token_mint: str, charity_id: str, app_url: str = DEFAULT_APP_URL) -> str:
    # reauth forces a fresh X login when the charity follows the link from email
    query = urlencode({"token": token_mint, "charity": charity_id, "reauth": "true"})
    return f"{app_url.rstrip('/')}/charity-portal?{query}"


def render_subject(data: CharityNotification) -> str:
    return f'Token "{data.token_name}" launched in support of {data.charity_name}'


def _template_context(data: CharityNotification) -> Dict[str, Any]:
    return dict(data.model_dump(), contact_email=CONTACT_EMAIL, year=datetime.now(timezone.utc).year)


def render_text(data: CharityNotification) -> str:
    return templates.get_template("charity_approval.txt").render(**_template_context(data))


def render_html(data: CharityNotification) -> str:
    return templates.get_template("charity_approval.html").render(**_template_context(data))


def _response_json(resp: httpx.Response) -> Dict[str, Any]:
    """The response body as a JSON object, or {} when it is not one."""
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class Mailer:
    def __init__(
        self,
        api_key: Optional[str],
        sender: str = DEFAULT_EMAIL_FROM,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 15.0,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self.client = http_client or httpx.AsyncClient(timeout=timeout_s)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Mailer":
        return cls(settings.resend_api_key, sender=settings.email_from)

    async def close(self) -> None:
        await self.client.aclose()

    async def send_charity_approval_email(self, data: CharityNotification) -> EmailResult:
        if not self.api_key:
            logger.warning("RESEND_API_KEY not configured, skipping email notification")
            return EmailResult(success=False, error="Email service not configured")

        payload = {
            "from": self.sender,
            "to": [data.charity_email],
            "subject": render_subject(data),
            "html": render_html(data),
            "text": render_text(data),
        }
        try:
            resp = await self.client.post(
                RESEND_API_URL, json=payload, headers={"Authorization": f"Bearer {self.api_key}"}
            )
        except httpx.HTTPError as e:
            logger.error(f"Error sending charity approval email: {e}")
            return EmailResult(success=False, error=str(e) or "Unknown error")

        body = _response_json(resp)
        if resp.status_code >= 400:
            message = str(body.get("message") or resp.text or resp.status_code)
            logger.error(f"Failed to send charity approval email: {resp.status_code} {message}")
            return EmailResult(success=False, error=message)

        message_id = body.get("id")
        if not message_id:
            logger.error(f"Unexpected Resend response: {resp.status_code} {resp.text[:200]}")
            return EmailResult(success=False, error="Email service returned an unexpected response")
        logger.info(f"Sent approval notification to {data.charity_email} for token {data.token_name}, messageId: {message_id}")
        return EmailResult(success=True, message_id=str(message_id))
