"""Ways of telling the CalDAV handler who is making a request.

Authentication itself happens outside this package, typically in middleware
that stores the user in the ASGI scope.
"""

from __future__ import annotations

from starlette.requests import Request

from .caldav import PrincipalResolver
from .models import Principal


async def scope_principal(request: Request) -> Principal | None:
    """Read the principal that authentication middleware put in the scope."""
    user = request.scope.get("user")
    if isinstance(user, Principal):
        return user
    return None


def static_principal(principal: Principal) -> PrincipalResolver:
    """Treat every request as coming from one user (single-user deployments)."""

    async def resolve(request: Request) -> Principal | None:
        return principal

    return resolve
