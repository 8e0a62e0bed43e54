# Services module
from app.services.run_sequence_service import RunSequenceService
from app.services.ledger_service import LedgerService
from app.services.consolidation_service import ConsolidationService
from app.services.picking_service import PickingService
from app.services.run_lifecycle_service import RunLifecycleService

# Orders & returns
from app.services.order_service import OrderService
from app.services.return_service import ReturnService

__all__ = [
    "RunSequenceService",
    "LedgerService",
    "ConsolidationService",
    "PickingService",
    "RunLifecycleService",
    # Orders & returns
    "OrderService",
    "ReturnService",
]
