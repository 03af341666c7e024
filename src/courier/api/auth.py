"""Bearer token authentication for operator endpoints.

Operator endpoints (retry trigger, delivery log, resume) accept a single
static admin token configured through COURIER_ADMIN_TOKEN.
"""

from __future__ import annotations

import hmac
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from courier.config import settings as default_settings
from courier.exceptions import AuthenticationError
from courier.logging import get_logger

if TYPE_CHECKING:
    from courier.config import Settings

logger = get_logger(__name__)

# Security scheme for OpenAPI docs
security = HTTPBearer(auto_error=False)


class OperatorAuth:
    """FastAPI dependency guarding operator endpoints.

    Settings come from the constructor, else from ``app.state.settings``
    (set by create_app()), else from the global settings.

    Usage:
        @router.post("/retries/run", dependencies=[Depends(OperatorAuth())])
        async def run_retries(): ...
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings

    async def __call__(
        self,
        request: Request,
        credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    ) -> None:
        """Validate the bearer token when auth is enabled.

        Raises:
            AuthenticationError: If the token is missing or wrong.
        """
        settings = self.settings or getattr(request.app.state, "settings", default_settings)
        if not settings.is_auth_enabled:
            return

        if credentials is None:
            raise AuthenticationError("Missing authentication credentials")

        expected = (settings.admin_token or "").encode()
        if not expected or not hmac.compare_digest(credentials.credentials.encode(), expected):
            logger.warning("Rejected operator token", path=request.url.path)
            raise AuthenticationError("Invalid authentication credentials")


require_operator = OperatorAuth()

__all__ = ["OperatorAuth", "require_operator", "security"]
