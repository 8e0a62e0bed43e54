"""Import every model so Base.metadata knows all tables."""
from app.models.store import Store
from app.models.product import Product
from app.models.order import Order, OrderItem, OrderItemStatus, OrderStatus, derive_order_status
from app.models.return_request import ReturnRequest, ReturnStatus, ReturnReason
from app.models.run import (
    Run, RunItem, RunConfirmation,
    RunStatus, RunItemType, RunItemStatus, TERMINAL_ITEM_STATUSES,
)
from app.models.ledger import LedgerEntry, TransactionType
from app.models.run_sequence import RunSequence, RUN_SEQUENCE_NAME

__all__ = [
    "Store",
    "Product",
    "Order",
    "OrderItem",
    "OrderItemStatus",
    "OrderStatus",
    "derive_order_status",
    "ReturnRequest",
    "ReturnStatus",
    "ReturnReason",
    "Run",
    "RunItem",
    "RunConfirmation",
    "RunStatus",
    "RunItemType",
    "RunItemStatus",
    "TERMINAL_ITEM_STATUSES",
    "LedgerEntry",
    "TransactionType",
    "RunSequence",
    "RUN_SEQUENCE_NAME",
]
