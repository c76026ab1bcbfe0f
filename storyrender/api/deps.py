from typing import Annotated

from fastapi import Depends, Request

from storyrender.services.render_jobs import RenderJobService


def get_render_service(request: Request) -> RenderJobService:
    return request.app.state.render_service


RenderService = Annotated[RenderJobService, Depends(get_render_service)]
