"""Part catalog lookup backed by the parts table."""

from typing import Iterable, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.models.part import Part
from quotedesk.services.collaborators import PartPrice


class SqlPartCatalog:
    """Organization-scoped catalog; caches lookups for the lifetime of one operation."""

    def __init__(self, session: AsyncSession, organization_id: uuid.UUID):
        self.session = session
        self.organization_id = organization_id
        self._cache: dict[str, Optional[PartPrice]] = {}

    async def get_part(self, part_number: str) -> Optional[PartPrice]:
        if part_number not in self._cache:
            await self.preload([part_number])
        return self._cache.get(part_number)

    async def preload(self, part_numbers: Iterable[str]) -> None:
        wanted = [p for p in set(part_numbers) if p not in self._cache]
        if not wanted:
            return
        result = await self.session.execute(
            select(Part).where(
                Part.organization_id == self.organization_id,
                Part.part_number.in_(wanted),
            )
        )
        found = {p.part_number: p for p in result.scalars().all()}
        for number in wanted:
            part = found.get(number)
            self._cache[number] = (
                PartPrice(price=part.price, cost=part.cost, part_id=part.id) if part else None
            )
