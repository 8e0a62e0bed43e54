from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Run consolidation & lifecycle
    runs,
    # Courier picking
    picking,
    # Reconciliation
    ledger,
    # Source records
    orders,
    returns,
)


api_router = APIRouter(prefix="/api/v1")

api_router.include_router(runs.router, prefix="/runs", tags=["Runs"])
api_router.include_router(picking.router, prefix="/picking", tags=["Picking"])
api_router.include_router(ledger.router, prefix="/ledger", tags=["Ledger"])
api_router.include_router(orders.router, prefix="/orders", tags=["Orders"])
api_router.include_router(returns.router, prefix="/returns", tags=["Returns"])
