"""FastAPI dependencies shared by the v1 routers."""

from fastapi import HTTPException, Request, status

from appraise.core.orchestrator import RunOrchestrator


def get_orchestrator(request: Request) -> RunOrchestrator:
    """Return the orchestrator created by the application lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Run orchestrator is not initialized",
        )
    return orchestrator
