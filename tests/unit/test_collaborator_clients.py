"""
Unit tests for quotedesk/services/email_gateway.py and
quotedesk/services/extraction_client.py against an httpx MockTransport.
"""

import json
from decimal import Decimal

import httpx
import pytest
from tenacity import wait_none

from quotedesk.services import email_gateway, http_client
from quotedesk.services.collaborators import (
    Attachment,
    EmailCollaboratorError,
    ExtractionCollaboratorError,
)
from quotedesk.services.email_gateway import EmailGatewayClient
from quotedesk.services.extraction_client import ExtractionClient


@pytest.fixture
def mock_http(monkeypatch):
    """Route the shared http client through a handler the test installs."""
    state = {"handler": None, "requests": []}

    def dispatch(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        return state["handler"](request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(dispatch))
    monkeypatch.setattr(http_client, "_http_client", client)
    monkeypatch.setattr(email_gateway._request.retry, "wait", wait_none())
    return state


@pytest.mark.asyncio
async def test_list_new_messages_parses_gateway_payload(mock_http):
    mock_http["handler"] = lambda request: httpx.Response(200, json={"messages": [{
        "id": "gm-1",
        "subject": "RE: Quote Request QR-03-2026-0001",
        "body": "Total: $420.00",
        "received_at": "2026-03-02T10:00:00Z",
        "attachments": [{"filename": "quote.pdf", "content_type": "application/pdf"}],
    }]})

    client = EmailGatewayClient(base_url="https://mail.example", token="t0k")
    messages = await client.list_new_messages("QR-03-2026-0001/abc")

    assert len(messages) == 1
    assert messages[0].external_id == "gm-1"
    assert messages[0].direction == "INBOUND"
    assert messages[0].attachments[0].filename == "quote.pdf"
    request = mock_http["requests"][0]
    assert request.url.params["thread_ref"] == "QR-03-2026-0001/abc"
    assert request.headers["authorization"] == "Bearer t0k"


@pytest.mark.asyncio
async def test_empty_inbox_is_not_an_error(mock_http):
    mock_http["handler"] = lambda request: httpx.Response(200, json={"messages": []})
    client = EmailGatewayClient(base_url="https://mail.example")
    assert await client.list_new_messages("ref") == []


@pytest.mark.asyncio
async def test_gateway_5xx_is_retried_then_raised(mock_http):
    mock_http["handler"] = lambda request: httpx.Response(503, text="busy")
    client = EmailGatewayClient(base_url="https://mail.example")

    with pytest.raises(EmailCollaboratorError):
        await client.list_new_messages("ref")
    assert len(mock_http["requests"]) == 3


@pytest.mark.asyncio
async def test_gateway_recovers_after_transient_failure(mock_http):
    responses = [httpx.Response(502), httpx.Response(200, json={"message_id": "out-9"})]
    mock_http["handler"] = lambda request: responses.pop(0)
    client = EmailGatewayClient(base_url="https://mail.example")

    message_id = await client.send("ref", "Quote Request", "Please quote", to="sales@alpha.example")

    assert message_id == "out-9"
    sent = json.loads(mock_http["requests"][-1].content)
    assert sent["to"] == ["sales@alpha.example"]


@pytest.mark.asyncio
async def test_gateway_auth_failure_is_not_retried(mock_http):
    mock_http["handler"] = lambda request: httpx.Response(401, json={"detail": "bad token"})
    client = EmailGatewayClient(base_url="https://mail.example")

    with pytest.raises(EmailCollaboratorError):
        await client.send("ref", "s", "b")
    assert len(mock_http["requests"]) == 1


@pytest.mark.asyncio
async def test_unconfigured_gateway_raises():
    with pytest.raises(EmailCollaboratorError):
        await EmailGatewayClient(base_url="").list_new_messages("ref")


@pytest.mark.asyncio
async def test_extraction_returns_decimal_amount(mock_http):
    mock_http["handler"] = lambda request: httpx.Response(200, json={"amount": "420.50"})
    extractor = ExtractionClient(base_url="https://extract.example")

    amount = await extractor.extract_amount("Total $420.50", [Attachment("q.pdf", "application/pdf")])

    assert amount == Decimal("420.50")
    payload = json.loads(mock_http["requests"][0].content)
    assert payload["attachments"][0]["filename"] == "q.pdf"


@pytest.mark.asyncio
async def test_extraction_nothing_found_is_none(mock_http):
    mock_http["handler"] = lambda request: httpx.Response(200, json={"amount": None})
    extractor = ExtractionClient(base_url="https://extract.example")
    assert await extractor.extract_amount("thanks, will revert", []) is None


@pytest.mark.asyncio
async def test_extraction_errors_raise(mock_http):
    extractor = ExtractionClient(base_url="https://extract.example")

    mock_http["handler"] = lambda request: httpx.Response(500)
    with pytest.raises(ExtractionCollaboratorError):
        await extractor.extract_amount("body", [])

    mock_http["handler"] = lambda request: httpx.Response(200, json={"amount": "n/a"})
    with pytest.raises(ExtractionCollaboratorError):
        await extractor.extract_amount("body", [])
