from fastapi import APIRouter
from fastapi.responses import JSONResponse

from tts_proxy.models import HealthStatus
from tts_proxy.synthesis.route import router as synthesis_router

router = APIRouter()


@router.get("/")
async def health():
    """Liveness check; never contacts the speech provider."""
    return JSONResponse(HealthStatus().model_dump())


router.include_router(synthesis_router)
