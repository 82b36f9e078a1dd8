from fastapi import APIRouter

from crosslister.api.v1.endpoints.health import router as health_router
from crosslister.api.v1.endpoints.jobs import router as jobs_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(jobs_router, tags=["jobs"])
