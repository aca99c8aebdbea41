"""
Outgoing mail through the Resend HTTP API. Bodies are Jinja2 templates
under templates/emails/.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import asyncio
import logging
import os

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

logger = logging.getLogger(__name__)

RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
RESEND_FROM_EMAIL = os.environ.get("RESEND_FROM_EMAIL", "")
RESEND_API_URL = os.environ.get("RESEND_API_URL", "https://api.resend.com/emails")

DEFAULT_FROM = "E-Summit <onboarding@resend.dev>"
# sender domain that Resend never verified; mail from it bounces
UNVERIFIED_FROM_DOMAIN = "esummit26-iiitdm.vercel.app"

BATCH_SIZE = 10
BATCH_PAUSE_SECONDS = 0.5
MAX_REPORTED_ERRORS = 10

TEMPLATE_DIR = Path(__file__).parent / "templates" / "emails"


def from_address(configured: Optional[str] = None) -> str:
    configured = RESEND_FROM_EMAIL if configured is None else configured
    if not configured or UNVERIFIED_FROM_DOMAIN in configured:
        return DEFAULT_FROM
    return configured


@dataclass
class SendResult:
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class Recipient:
    email: str
    name: str = "Attendee"


@dataclass
class BulkResult:
    total: int = 0
    sent: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


class Mailer:
    def __init__(self, http: httpx.AsyncClient, api_key: str = RESEND_API_KEY,
                 api_url: str = RESEND_API_URL, sender: Optional[str] = None):
        self.http = http
        self.api_key = api_key
        self.api_url = api_url
        self.sender = from_address(sender)
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, template: str, **ctx) -> str:
        return self.env.get_template(template).render(**ctx)

    async def send(self, to: str, subject: str, html: str) -> SendResult:
        try:
            r = await self.http.post(
                self.api_url,
                json={"from": self.sender, "to": [to],
                      "subject": subject, "html": html},
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            logger.error("[Email] send to %s failed: %s", to, e)
            return SendResult(False, error=str(e) or e.__class__.__name__)

        try:
            data = r.json()
        except ValueError:
            data = {}
        if r.status_code >= 400:
            msg = data.get("message") or f"HTTP {r.status_code}"
            logger.error("[Email] send to %s rejected: %s", to, msg)
            return SendResult(False, error=msg)
        return SendResult(True, id=data.get("id"))

    async def send_payment_approval(self, to: str, user_name: str,
                                    ticket_type: str, amount: int) -> SendResult:
        html = self.render("payment_approved.html", user_name=user_name,
                           ticket_type=ticket_type, amount=amount)
        res = await self.send(to, "Payment Approved - E-Summit '26", html)
        if res.success:
            logger.info("[Email] approval sent: %s", res.id)
        return res

    async def send_payment_rejection(self, to: str, user_name: str,
                                     ticket_type: str, amount: int) -> SendResult:
        html = self.render("payment_rejected.html", user_name=user_name,
                           ticket_type=ticket_type, amount=amount)
        res = await self.send(to, "Payment Verification Failed - E-Summit '26", html)
        if res.success:
            logger.info("[Email] rejection sent: %s", res.id)
        return res

    async def send_reminder(self, recipient: Recipient, subject: str,
                            message: str, test: bool = False) -> SendResult:
        html = self.render("event_reminder.html", user_name=recipient.name,
                           subject=subject, lines=message.splitlines())
        return await self.send(recipient.email,
                               f"[TEST] {subject}" if test else subject, html)

    async def send_reminders(self, recipients: Sequence[Recipient],
                             subject: str, message: str) -> BulkResult:
        """Send in batches of BATCH_SIZE with a short pause in between."""
        out = BulkResult(total=len(recipients))
        for i in range(0, len(recipients), BATCH_SIZE):
            batch = recipients[i:i + BATCH_SIZE]
            results = await asyncio.gather(*(
                self.send_reminder(r, subject, message) for r in batch
            ))
            for rcpt, res in zip(batch, results):
                if res.success:
                    out.sent += 1
                else:
                    out.failed += 1
                    out.errors.append(f"{rcpt.email}: {res.error}")
            if i + BATCH_SIZE < len(recipients):
                await asyncio.sleep(BATCH_PAUSE_SECONDS)
        out.errors = out.errors[:MAX_REPORTED_ERRORS]
        logger.info("[Email] reminder: %d sent, %d failed of %d",
                    out.sent, out.failed, out.total)
        return out


def unique_recipients(pairs: Sequence[tuple]) -> List[Recipient]:
    """(email, name) pairs -> first occurrence per address."""
    seen: Dict[str, Recipient] = {}
    for email, name in pairs:
        if email and email not in seen:
            seen[email] = Recipient(email=email, name=name or "Attendee")
    return list(seen.values())
