from typing import Annotated

from fastapi import Depends, Request

from narration_render.services.render_orchestrator import RenderJobOrchestrator


def get_orchestrator(request: Request) -> RenderJobOrchestrator:
    """The orchestrator created by the app lifespan (or injected by tests)."""
    return request.app.state.orchestrator


Orchestrator = Annotated[RenderJobOrchestrator, Depends(get_orchestrator)]
