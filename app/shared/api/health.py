from fastapi import APIRouter, Request

from .utils import ApiSuccess

router = APIRouter()


@router.get("/health", response_model=ApiSuccess)
async def health():
    return ApiSuccess(results="OK")


@router.get("/health/ready", response_model=ApiSuccess)
async def ready(request: Request):
    """Report the configured execution backend once startup has wired it."""
    backend = getattr(request.app.state, "execution_backend", None)
    return ApiSuccess(results={"backend": backend.kind.value if backend else None})
