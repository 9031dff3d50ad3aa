"""
Email collaborator backed by the mail gateway's REST API.

Transport and 5xx failures are retried with exponential back-off; anything
that still fails surfaces as EmailCollaboratorError. An empty inbox is an
empty list, never an error.
"""

from datetime import datetime, timezone
import logging
from typing import Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type, before_sleep_log
import structlog

from quotedesk.config import settings
from quotedesk.services.collaborators import Attachment, EmailCollaboratorError, Message
from quotedesk.services.http_client import get_http_client

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)


class _GatewayRetryableError(Exception):
    """Raised for 5xx or network errors that warrant a retry."""


def _parse_datetime(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


def _parse_message(raw: dict) -> Message:
    return Message(
        external_id=str(raw["id"]),
        subject=raw.get("subject"),
        body=raw.get("body") or "",
        received_at=_parse_datetime(raw.get("received_at")),
        direction=raw.get("direction", "INBOUND"),
        attachments=[
            Attachment(
                filename=a.get("filename", ""),
                content_type=a.get("content_type", "application/octet-stream"),
                url=a.get("url"),
            )
            for a in raw.get("attachments", [])
        ],
    )


@retry(
    retry=retry_if_exception_type(_GatewayRetryableError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def _request(method: str, url: str, headers: dict, **kwargs) -> httpx.Response:
    client = get_http_client()
    try:
        response = await client.request(method, url, headers=headers, **kwargs)
    except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
        logger.warning("email_gateway_network_error_retrying", url=url, error=str(exc))
        raise _GatewayRetryableError(str(exc)) from exc

    if response.status_code >= 500:
        logger.warning(
            "email_gateway_5xx_retrying", url=url, status_code=response.status_code
        )
        raise _GatewayRetryableError(f"Gateway returned {response.status_code}")
    return response


class EmailGatewayClient:
    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None):
        self.base_url = (base_url or settings.EMAIL_GATEWAY_URL).rstrip("/")
        self.token = token if token is not None else settings.EMAIL_GATEWAY_TOKEN

    def _headers(self) -> dict:
        headers = {"accept": "application/json", "content-type": "application/json"}
        if self.token:
            headers["authorization"] = f"Bearer {self.token}"
        return headers

    async def _call(self, method: str, path: str, thread_ref: str, **kwargs) -> httpx.Response:
        if not self.base_url:
            raise EmailCollaboratorError("EMAIL_GATEWAY_URL is not configured")
        try:
            response = await _request(method, f"{self.base_url}{path}", self._headers(), **kwargs)
        except _GatewayRetryableError as exc:
            logger.error("email_gateway_retries_exhausted", thread_ref=thread_ref, error=str(exc))
            raise EmailCollaboratorError(str(exc)) from exc
        if response.status_code >= 400:
            logger.error(
                "email_gateway_request_failed",
                thread_ref=thread_ref,
                status_code=response.status_code,
                response=response.text[:500],
            )
            raise EmailCollaboratorError(f"Gateway returned {response.status_code}")
        return response

    async def list_new_messages(self, thread_ref: str) -> list[Message]:
        response = await self._call(
            "GET", "/threads/messages", thread_ref, params={"thread_ref": thread_ref, "unread": "true"}
        )
        messages = [_parse_message(m) for m in response.json().get("messages", [])]
        logger.info("email_gateway_messages_listed", thread_ref=thread_ref, count=len(messages))
        return messages

    async def send(
        self, thread_ref: str, subject: str, body: str, to: Optional[str] = None
    ) -> str:
        payload = {"thread_ref": thread_ref, "subject": subject, "body": body}
        if to:
            payload["to"] = [to]
        response = await self._call("POST", "/messages", thread_ref, json=payload)
        message_id = response.json().get("message_id")
        if not message_id:
            raise EmailCollaboratorError("Gateway accepted the message but returned no id")
        logger.info("email_gateway_message_sent", thread_ref=thread_ref, message_id=message_id)
        return str(message_id)
