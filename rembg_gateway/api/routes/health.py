from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness probe, failing once shutdown has started."""
    if request.app.state.shutdown_token.cancelled:
        return JSONResponse(status_code=503, content={"status": "shutting_down"})
    return {"status": "ready"}
