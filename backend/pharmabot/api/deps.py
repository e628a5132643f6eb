"""FastAPI dependencies: the service container set up by the app lifespan."""
from fastapi import Request

from pharmabot.core.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
