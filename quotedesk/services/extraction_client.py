"""Extraction collaborator: asks the document extraction service for a quoted total."""

from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx
import structlog

from quotedesk.config import settings
from quotedesk.services.collaborators import Attachment, ExtractionCollaboratorError
from quotedesk.services.http_client import get_http_client

logger = structlog.get_logger()


class ExtractionClient:
    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None):
        self.base_url = (base_url or settings.EXTRACTION_SERVICE_URL).rstrip("/")
        self.token = token if token is not None else settings.EXTRACTION_SERVICE_TOKEN

    async def extract_amount(
        self, message_body: str, attachments: list[Attachment]
    ) -> Optional[Decimal]:
        """
        Total quoted amount found in the message, or None.

        "Nothing found" is a normal None result; only transport, auth or
        malformed responses raise.
        """
        if not self.base_url:
            raise ExtractionCollaboratorError("EXTRACTION_SERVICE_URL is not configured")

        headers = {"accept": "application/json", "content-type": "application/json"}
        if self.token:
            headers["authorization"] = f"Bearer {self.token}"
        payload = {
            "body": message_body,
            "attachments": [
                {"filename": a.filename, "content_type": a.content_type, "url": a.url}
                for a in attachments
            ],
        }

        try:
            response = await get_http_client().post(
                f"{self.base_url}/extract/amount", headers=headers, json=payload
            )
        except httpx.HTTPError as exc:
            logger.error("extraction_service_unreachable", error=str(exc))
            raise ExtractionCollaboratorError(str(exc)) from exc

        if response.status_code >= 400:
            logger.error(
                "extraction_service_failed",
                status_code=response.status_code,
                response=response.text[:500],
            )
            raise ExtractionCollaboratorError(
                f"Extraction service returned {response.status_code}"
            )

        amount = response.json().get("amount")
        if amount is None:
            return None
        try:
            return Decimal(str(amount))
        except InvalidOperation as exc:
            raise ExtractionCollaboratorError(f"Malformed amount {amount!r}") from exc
