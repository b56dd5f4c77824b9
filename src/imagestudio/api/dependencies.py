"""FastAPI dependencies for generation routes."""

from fastapi import Request

from imagestudio.services.image_studio.orchestrator import GenerationOrchestrator


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """Get the GenerationOrchestrator created by the app lifespan.

    Args:
        request: FastAPI Request object (contains app.state)

    Returns:
        Orchestrator shared by all requests

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(orchestrator=Depends(get_orchestrator)):
        ...     result = await orchestrator.list_history()
    """
    return request.app.state.orchestrator
