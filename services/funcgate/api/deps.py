"""
Dependency Injection for the function gateway API.

Manage request handler dependencies using FastAPI Depends.
"""

from typing import Annotated

from fastapi import Depends, Request

from ..services.dispatcher import GatewayDispatcher


# ==========================================
# Service Accessors
# ==========================================


def get_dispatcher(request: Request) -> GatewayDispatcher:
    return request.app.state.dispatcher


# Service Dependency Type Aliases
DispatcherDep = Annotated[GatewayDispatcher, Depends(get_dispatcher)]
