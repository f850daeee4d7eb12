from __future__ import annotations

import html
import logging
from typing import Optional
from uuid import UUID

import httpx

from ..core.config import get_settings
from ..core.logging import mask_email

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


def build_report_url(base_url: str, job_id: UUID, share_token: Optional[str] = None) -> str:
    url = f"{base_url.rstrip('/')}/report/{job_id}"
    if share_token:
        url += f"?token={share_token}"
    return url


def build_report_ready_email(
    query: str, post_count: int, report_url: str, top_insight: str
) -> tuple[str, str]:
    subject = f'Your report on "{query}" is ready'
    body = (
        "<h2>Your report is ready</h2>"
        f"<p>We analyzed <strong>{post_count} posts</strong> about "
        f"<strong>&ldquo;{html.escape(query)}&rdquo;</strong> and your report is now available.</p>"
        f"<p><strong>Top insight:</strong> {html.escape(top_insight)}</p>"
        f'<p><a href="{html.escape(report_url, quote=True)}">View full report</a></p>'
    )
    return subject, body


class ReportNotifier:
    """
    Completion emails over the SendGrid v3 HTTP API.

    Without SENDGRID_API_KEY every send is skipped. Delivery problems are
    logged and reported as False; they never propagate into the pipeline.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self.from_email = from_email or settings.SENDGRID_FROM_EMAIL
        self.base_url = base_url or settings.APP_BASE_URL
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def send_report_ready_email(
        self,
        address: str,
        job_id: UUID,
        query: str,
        post_count: int,
        top_insight: str,
        share_token: Optional[str] = None,
    ) -> bool:
        if not self.enabled:
            logger.info(
                "SendGrid not configured; skipping report email",
                extra={"job_id": str(job_id), "step": "notify"},
            )
            return False

        subject, body = build_report_ready_email(
            query, post_count, build_report_url(self.base_url, job_id, share_token), top_insight
        )
        payload = {
            "personalizations": [{"to": [{"email": address}]}],
            "from": {"email": self.from_email},
            "subject": subject,
            "content": [{"type": "text/html", "value": body}],
        }

        try:
            async with httpx.AsyncClient(timeout=15, transport=self._transport) as client:
                resp = await client.post(
                    SENDGRID_SEND_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Report email to %s failed: %s",
                mask_email(address),
                e,
                extra={"job_id": str(job_id), "step": "notify"},
            )
            return False

        logger.info(
            "Report email sent to %s",
            mask_email(address),
            extra={"job_id": str(job_id), "step": "notify"},
        )
        return True
