"""Central model registry: import all models so Alembic autodiscover works."""

from quotedesk.database import Base  # noqa: F401

from quotedesk.models.organization import Organization  # noqa: F401
from quotedesk.models.supplier import Supplier  # noqa: F401
from quotedesk.models.part import Part  # noqa: F401
from quotedesk.models.quote_request import (  # noqa: F401
    QuoteRequest,
    QuoteItem,
    QuoteStatus,
    quote_request_suppliers,
)
from quotedesk.models.supplier_thread import (  # noqa: F401
    SupplierThread,
    SupplierThreadMessage,
    ThreadStatus,
)
from quotedesk.models.order import Order, OrderItem, OrderStatus  # noqa: F401
from quotedesk.models.cost_savings import CostSavingsRecord, CostSavingsEntry  # noqa: F401
from quotedesk.models.audit_log import AuditLog  # noqa: F401
