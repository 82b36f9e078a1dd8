from fastapi import APIRouter

from crosslister.adapters.registry import supported_platforms

router = APIRouter()


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "platforms": supported_platforms()}
