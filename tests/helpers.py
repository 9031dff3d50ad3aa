"""Seed helpers and collaborator fakes shared by the test suites."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from quotedesk.models.part import Part
from quotedesk.models.supplier import Supplier
from quotedesk.services.collaborators import Actor, Message


async def add_supplier(db, organization_id, name: str, email: Optional[str] = None) -> Supplier:
    supplier = Supplier(
        organization_id=organization_id,
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
    )
    db.add(supplier)
    await db.flush()
    return supplier


async def add_part(db, organization_id, part_number: str, price, cost=None) -> Part:
    part = Part(
        organization_id=organization_id,
        part_number=part_number,
        price=Decimal(str(price)),
        cost=Decimal(str(cost)) if cost is not None else None,
    )
    db.add(part)
    await db.flush()
    return part


def make_actor(organization_id, role: str = "TECHNICIAN", user_id: Optional[uuid.UUID] = None) -> Actor:
    return Actor(
        user_id=user_id or uuid.uuid4(),
        organization_id=organization_id,
        role=role,
        email=f"{role.lower()}@northfleet.example",
    )


class FakeEmailClient:
    """Serves canned inbound messages per thread reference and records sends."""

    def __init__(self, inbox: Optional[dict] = None, failing_refs=()):
        self.inbox = inbox or {}
        self.failing_refs = set(failing_refs)
        self.sent: list[dict] = []

    async def list_new_messages(self, thread_ref: str) -> list[Message]:
        if thread_ref in self.failing_refs:
            raise ConnectionError("mailbox unavailable")
        return list(self.inbox.get(thread_ref, []))

    async def send(self, thread_ref: str, subject: str, body: str, to=None) -> str:
        self.sent.append({"thread_ref": thread_ref, "subject": subject, "body": body, "to": to})
        return f"msg-{len(self.sent)}"


class FakeExtractor:
    """Returns a fixed amount per message body; None when the body is unknown."""

    def __init__(self, amounts: Optional[dict] = None):
        self.amounts = amounts or {}
        self.calls: list[str] = []

    async def extract_amount(self, message_body: str, attachments) -> Optional[Decimal]:
        self.calls.append(message_body)
        return self.amounts.get(message_body)


class FakeCatalog:
    """In-memory PartCatalog keyed by part number."""

    def __init__(self, parts: Optional[dict] = None):
        self.parts = parts or {}

    async def get_part(self, part_number: str):
        return self.parts.get(part_number)


def inbound(external_id: str, body: str, received_at: Optional[datetime] = None) -> Message:
    return Message(
        external_id=external_id,
        subject="RE: quote",
        body=body,
        received_at=received_at or datetime(2026, 3, 2, 10, 0, 0),
    )
