from fastapi import APIRouter, Depends

from app.api.v1.dependency import get_stream_service
from app.api.v1.schemas.stream import ApiOut, QuotaOut, SetAllowedIn
from app.domain.stream import StreamService
from app.shared.api.utils import verify_api_key

router = APIRouter(prefix="/admin/quota")


@router.post("/set_allowed", dependencies=[Depends(verify_api_key)])
async def set_allowed(
    body: SetAllowedIn,
    service: StreamService = Depends(get_stream_service),
) -> ApiOut[QuotaOut]:
    """Set a user's concurrent stream ceiling. Running streams are not affected."""
    quota = await service.set_allowed(body.user_id, body.allowed)
    return ApiOut[QuotaOut](results=QuotaOut.from_quota(quota))
