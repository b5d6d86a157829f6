from fastapi import APIRouter, Depends, File, UploadFile

from app.api.v1.dependency import CurrentUser, get_upload_service
from app.api.v1.schemas.stream import ApiOut, UploadVideoOut
from app.services.upload_storage import UploadStorage

router = APIRouter(prefix="/upload")


@router.post("/upload_video")
async def upload_video(
    user: CurrentUser,
    file: UploadFile = File(...),
    storage: UploadStorage = Depends(get_upload_service),
) -> ApiOut[UploadVideoOut]:
    """Store a video file; the returned path is usable as a `local_file` source."""
    try:
        stored = await storage.save(file, user_id=user.user_id)
    finally:
        await file.close()
    return ApiOut[UploadVideoOut](results=UploadVideoOut(**stored.model_dump()))
