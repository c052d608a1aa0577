"""
FastAPI dependencies shared by the routers.
"""

from fastapi import Request

from shortlinks.core.container import ServiceContainer
from shortlinks.services.request_gate import DefaultIdentity, Identity


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_identity(request: Request) -> Identity:
    """
    Identity resolved by the request gate for this request.

    Routes outside the gate run as the default identity.
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        return DefaultIdentity(user_id=request.app.state.container.settings.DEFAULT_USER_ID)
    return identity
