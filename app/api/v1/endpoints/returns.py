"""Return request API endpoints."""
import uuid

from fastapi import APIRouter, Depends

from app.api.deps import DB, require_permissions
from app.schemas.return_request import ReturnProcessRequest, ReturnRequestResponse
from app.services.return_service import ReturnService


router = APIRouter()


@router.post(
    "/{return_id}/process",
    response_model=ReturnRequestResponse,
    dependencies=[Depends(require_permissions("returns:manage"))]
)
async def process_return(
    return_id: uuid.UUID,
    data: ReturnProcessRequest,
    db: DB,
):
    """Accept or reject a pending return directly, outside any run."""
    ret = await ReturnService(db).process_return(return_id, data.decision, data.notes)
    return ReturnRequestResponse.model_validate(ret)
