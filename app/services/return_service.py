"""Operator decisions on store returns handled outside a run."""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enum_utils import normalize_to_lowercase
from app.core.exceptions import ConflictingAssignment, FulfillmentError, UnknownReference
from app.models.ledger import LedgerEntry, TransactionType
from app.models.product import Product
from app.models.return_request import ReturnRequest, ReturnStatus


logger = logging.getLogger(__name__)


class ReturnService:
    """Service for direct return processing."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def process_return(
        self,
        return_id: uuid.UUID,
        decision: str,
        notes: Optional[str] = None,
    ) -> ReturnRequest:
        """
        Accept or reject a pending return without sending it through a run.

        Accepting puts the units back in inventory and, when the return has
        a value, credits the store.
        """
        decision = normalize_to_lowercase(decision)
        if decision not in (ReturnStatus.PROCESSED.value, ReturnStatus.REJECTED.value):
            raise ValueError(f"Invalid decision '{decision}'. Must be processed or rejected")

        try:
            result = await self.db.execute(
                select(ReturnRequest)
                .where(ReturnRequest.id == return_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            ret = result.scalar_one_or_none()
            if ret is None:
                raise UnknownReference("Return request not found", {"return_id": str(return_id)})
            if ret.status != ReturnStatus.PENDING.value:
                raise ConflictingAssignment(
                    f"Only pending returns can be processed (return is {ret.status})",
                    {"return_id": str(return_id), "status": ret.status},
                )

            ret.status = decision
            ret.processed_at = datetime.now(timezone.utc)
            if notes is not None:
                ret.notes = notes

            if decision == ReturnStatus.PROCESSED.value:
                product = (await self.db.execute(
                    select(Product).where(Product.barcode == ret.barcode).with_for_update()
                )).scalar_one_or_none()
                if product is not None:
                    product.inventory = (product.inventory or 0) + ret.quantity

                amount = Decimal(ret.return_amount or 0)
                if amount > 0:
                    self.db.add(LedgerEntry(
                        store_id=ret.store_id,
                        store_name=ret.store_name,
                        transaction_type=TransactionType.CREDIT.value,
                        amount=amount,
                        discount=Decimal("0"),
                        entry_date=datetime.now(timezone.utc).date(),
                        notes=f"Return credit: {ret.style_name} ({ret.quantity}x)",
                    ))

            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise

        logger.info(f"Return {ret.barcode} ({return_id}) {decision}")
        return ret
