"""Health check routes."""

from fastapi import APIRouter, Request

from ... import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"status": "healthy", "service": "dealer-contracts-api", "version": __version__}


@router.get("/ready")
def ready(request: Request):
    """Readiness check - verifies database is accessible."""
    try:
        request.app.state.services.db.ping()
        return {"status": "ready"}
    except Exception as e:
        return {"status": "not_ready", "detail": str(e)}
