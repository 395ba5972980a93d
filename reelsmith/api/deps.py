from typing import Annotated

from fastapi import Depends, Request

from reelsmith.render.job_engine import JobEngine


def get_engine(request: Request) -> JobEngine:
    """Engine created by the app lifespan."""
    return request.app.state.engine


Engine = Annotated[JobEngine, Depends(get_engine)]
