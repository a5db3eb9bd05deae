"""
FastAPI dependencies shared by the routers
"""
from uuid import UUID

from fastapi import HTTPException, Request, status

from packages.domain.pipeline import PipelineOrchestrator


def get_owner_id(request: Request) -> UUID:
    """Signed-in user forwarded by the gateway (X-User-Id)"""
    owner_id = getattr(request.state, "owner_id", None)
    if owner_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid X-User-Id header",
        )
    return owner_id


def get_pipeline(request: Request) -> PipelineOrchestrator:
    """Pipeline wired at startup (see main.lifespan)"""
    return request.app.state.pipeline
