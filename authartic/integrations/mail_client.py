import base64
import logging

import httpx

from authartic.core.config import settings
from authartic.core.errors import DependencyFailure

logger = logging.getLogger(__name__)


class NotificationError(DependencyFailure):
    pass


class MailClient:
    """Thin client for the transactional mail relay."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = settings.MAIL_API_BASE_URL.rstrip("/")
        self.token = settings.MAIL_API_TOKEN
        self.sender = settings.MAIL_FROM
        self.timeout = settings.MAIL_TIMEOUT_SECONDS
        self._transport = transport

    async def _send(self, payload: dict) -> None:
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(f"{self.base_url}/send", json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NotificationError(f"Mail delivery failed: {e}") from e

        if r.status_code >= 300:
            raise NotificationError(f"Mail delivery failed ({r.status_code}): {r.text}")

    async def send_batch_archive(self, email: str, archive_bytes: bytes) -> None:
        await self._send(
            {
                "from": self.sender,
                "to": email,
                "subject": "Your certificates",
                "text": "Your certificates are attached as a zip archive.",
                "attachments": [
                    {
                        "filename": "certificates.zip",
                        "content_type": "application/zip",
                        "content": base64.b64encode(archive_bytes).decode("ascii"),
                    }
                ],
            }
        )
        logger.info("Sent certificate archive to %s (%d bytes)", email, len(archive_bytes))

    async def send_activation_link(self, email: str, token: str) -> None:
        link = f"{settings.FRONTEND_URL.rstrip('/')}/verify-email?token={token}"
        await self._send(
            {
                "from": self.sender,
                "to": email,
                "subject": "Activate your account",
                "text": f"Verify your email address by opening {link}",
            }
        )

    async def send_one_time_code(self, email: str, code: str) -> None:
        await self._send(
            {
                "from": self.sender,
                "to": email,
                "subject": "Your verification code",
                "text": f"Your one-time code is {code}",
            }
        )
