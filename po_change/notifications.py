from __future__ import annotations

from typing import Callable, Optional

import httpx
from loguru import logger

from po_change.config import Settings
from po_change.models import Request, UserProfile
from po_change.utils import redact_pii

RESEND_URL = "https://api.resend.com/emails"
REMINDER_LISTING = 5

MessageFor = Callable[[str], str]


class EmailNotifier:
    """Sends plain-text emails to every profile with an address.

    Without an API key the messages are only logged.
    """

    def __init__(
        self,
        settings: Settings,
        recipients: Callable[[], list[UserProfile]],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.recipients = recipients
        self.transport = transport

    def request_link(self, request_id: str | None = None) -> str:
        if request_id:
            return f"{self.settings.app_url}/requests/{request_id}"
        return self.settings.app_url

    async def send(self, subject: str, message_for: MessageFor) -> int:
        recipients = [p for p in self.recipients() if p.email]
        if not recipients:
            logger.warning(f"No recipients with an email address for '{subject}'")
            return 0

        if not self.settings.resend_api_key:
            for p in recipients:
                logger.info(f"[MOCK EMAIL] {subject}\n{redact_pii(message_for(p.full_name or p.email))}")
            return len(recipients)

        sender = f"{self.settings.from_name} <{self.settings.from_email}>"
        headers = {"Authorization": f"Bearer {self.settings.resend_api_key}"}
        sent = 0
        async with httpx.AsyncClient(timeout=10, transport=self.transport) as client:
            for p in recipients:
                resp = await client.post(
                    RESEND_URL,
                    headers=headers,
                    json={"from": sender, "to": [p.email], "subject": subject, "text": message_for(p.full_name or p.email)},
                )
                if resp.is_success:
                    sent += 1
                else:
                    logger.warning(f"Email to {redact_pii(p.email)} rejected: {resp.status_code} {resp.text}")
        logger.info(f"'{subject}' sent to {sent}/{len(recipients)} recipients")
        return sent

    async def notify_new_request(
        self, request_id: str, so_number: str, customer: str, requester_name: str, priority: str
    ) -> int:
        link = self.request_link(request_id)
        so_line = f"- SO number: {so_number}\n" if so_number else ""

        def message(name: str) -> str:
            return (
                f"Hello {name},\n\n"
                f"A new PO change request has been submitted.\n\n"
                f"- Requester: {requester_name}\n"
                f"- Customer: {customer}\n"
                f"{so_line}"
                f"- Priority: {priority}\n\n"
                f"Please review it here:\n{link}\n"
            )

        return await self.send("[Notice] New PO change request", message)

    async def notify_urgent_request(self, request_id: str, so_number: str, customer: str, requester_name: str) -> int:
        link = self.request_link(request_id)

        def message(name: str) -> str:
            return (
                f"Hello {name},\n\n"
                f"An urgent PO change request has been submitted.\n\n"
                f"- Requester: {requester_name}\n"
                f"- Customer: {customer}\n"
                f"- SO number: {so_number}\n"
                f"- Priority: urgent\n\n"
                f"Please review it immediately:\n{link}\n"
            )

        return await self.send("[Urgent] New urgent PO change request", message)

    async def send_pending_review_reminder(self, pending: list[Request]) -> int:
        if not pending:
            return 0
        lines = []
        for idx, req in enumerate(pending[:REMINDER_LISTING], start=1):
            so = f"SO: {req.so_number} | " if req.so_number else ""
            flag = " | [URGENT]" if req.priority == "urgent" else ""
            lines.append(f"{idx}. {so}Customer: {req.customer} | Requester: {req.requester_name}{flag}")
        if len(pending) > REMINDER_LISTING:
            lines.append(f"... and {len(pending) - REMINDER_LISTING} more")
        listing = "\n".join(lines)
        link = self.request_link()

        def message(name: str) -> str:
            return (
                f"Hello {name},\n\n"
                f"{len(pending)} PO change request(s) are still waiting for review.\n\n"
                f"{listing}\n\n"
                f"Please review them here:\n{link}\n"
            )

        return await self.send("[Reminder] PO change requests awaiting review", message)


async def notify_created(notifier: EmailNotifier, request: Request) -> None:
    """Announce a newly inserted request. Never raises: the insert already succeeded."""
    try:
        if request.priority == "urgent":
            await notifier.notify_urgent_request(request.id, request.so_number, request.customer, request.requester_name)
        else:
            await notifier.notify_new_request(
                request.id, request.so_number, request.customer, request.requester_name, request.priority
            )
    except Exception as exc:  # noqa: BLE001
        logger.warning(f"Notification for request {request.id} failed: {type(exc).__name__}: {exc}")
