"""FastAPI dependency injection: service container and session gate."""

from typing import Annotated

from fastapi import Depends, Request

from infra_dashboard.core.container import ServiceContainer
from infra_dashboard.security.exceptions import AuthenticationError


def get_container(request: Request) -> ServiceContainer:
    """Return the container built at startup (app.state.container)."""
    return request.app.state.container


def require_session(
    request: Request,
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> None:
    """401 unless the session cookie holds a valid token. No-op when no password is configured."""
    sessions = container.sessions
    if not sessions.enabled:
        return
    token = request.cookies.get(container.settings.session_cookie_name)
    if not token:
        raise AuthenticationError("Authentication required")
    sessions.validate(token)


Container = Annotated[ServiceContainer, Depends(get_container)]
