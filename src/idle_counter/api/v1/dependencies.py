"""Shared API dependencies for the counter runtime and trigger authentication."""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from idle_counter.core.security import verify_shared_secret, verify_trigger_token
from idle_counter.core.settings import settings
from idle_counter.services.runtime import CounterRuntime, get_counter_runtime

logger = logging.getLogger(__name__)

# Both schemes are optional individually; the trigger accepts either one.
reset_secret_header = APIKeyHeader(name="X-Reset-Secret", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)


def get_runtime() -> CounterRuntime:
    """Return the shared counter runtime."""
    return get_counter_runtime()


RuntimeDep = Annotated[CounterRuntime, Depends(get_runtime)]


def require_trigger_credentials(
    secret: Annotated[str | None, Depends(reset_secret_header)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    """Reject trigger requests that carry neither the shared secret nor a valid token.

    Raises:
        HTTPException: 401 when no valid credential is presented
    """
    expected = settings.reset_secret
    if verify_shared_secret(secret, expected):
        return
    if credentials is not None and verify_trigger_token(
        credentials.credentials, expected, algorithm=settings.reset_jwt_algorithm
    ):
        return

    logger.warning("Unauthorized reset trigger attempt")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
    )


TriggerAuthDep = Annotated[None, Depends(require_trigger_credentials)]
