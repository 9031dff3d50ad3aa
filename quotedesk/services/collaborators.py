"""
Contracts for the collaborators the quoting core calls out to.

Concrete implementations: email_gateway.EmailGatewayClient,
extraction_client.ExtractionClient, part_catalog.SqlPartCatalog and
middleware.authorization.RoleAuthorizer.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class Actor:
    user_id: uuid.UUID
    organization_id: uuid.UUID
    role: str
    email: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: dict) -> "Actor":
        return cls(
            user_id=uuid.UUID(str(claims["user_id"])),
            organization_id=uuid.UUID(str(claims["organization_id"])),
            role=claims["role"],
            email=claims.get("email"),
        )


@dataclass
class Attachment:
    filename: str
    content_type: str
    url: Optional[str] = None


@dataclass
class Message:
    external_id: str
    subject: Optional[str]
    body: str
    received_at: datetime
    direction: str = "INBOUND"
    attachments: list[Attachment] = field(default_factory=list)


@dataclass(frozen=True)
class PartPrice:
    price: Optional[Decimal]
    cost: Optional[Decimal]
    part_id: Optional[uuid.UUID] = None


class EmailCollaboratorError(Exception):
    """Transport/auth failure from the email collaborator (never raised for 'no messages')."""


class ExtractionCollaboratorError(Exception):
    """Transport/auth failure from the extraction collaborator."""


@runtime_checkable
class EmailClient(Protocol):
    async def list_new_messages(self, thread_ref: str) -> list[Message]: ...

    async def send(
        self, thread_ref: str, subject: str, body: str, to: Optional[str] = None
    ) -> str: ...


@runtime_checkable
class PriceExtractor(Protocol):
    async def extract_amount(
        self, message_body: str, attachments: list[Attachment]
    ) -> Optional[Decimal]: ...


@runtime_checkable
class Authorizer(Protocol):
    def has_approval_authority(self, actor: Actor) -> bool: ...

    def can_edit_quote_items(self, actor: Actor, quote) -> bool: ...


@runtime_checkable
class PartCatalog(Protocol):
    async def get_part(self, part_number: str) -> Optional[PartPrice]: ...
