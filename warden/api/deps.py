"""FastAPI dependencies backed by the active authorization provider.

The host authenticates requests and stores the caller's identifier on
``request.state.user_id``; these helpers only answer the authorization
question. Route registration stays with the host.
"""

from functools import wraps
from typing import Callable, List, Optional, Union

from fastapi import Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from warden.common.logger import get_logger
from warden.core.errors import ResolutionFailed
from warden.core.rbac.permissions import Permission, permission_id
from warden.core.rbac.provider import AuthorizationProvider
from warden.core.registry import get_registry

logger = get_logger("api")


def get_provider() -> AuthorizationProvider:
    """Active authorization provider dependency."""
    provider = get_registry().get_active()
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authorization provider not available",
        )
    return provider


def _check(
    provider: AuthorizationProvider,
    user_id: Optional[str],
    perm_strs: List[str],
    require_all: bool,
) -> None:
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )

    try:
        has_access = provider.check(user_id, perm_strs, require_all)
    except ResolutionFailed as e:
        # Not a denial: the answer is unknown, the client may retry
        logger.warning(f"Authorization for {user_id} unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authorization temporarily unavailable"
        )

    if not has_access:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Insufficient permissions. Required: {', '.join(perm_strs)}"
        )


class PermissionDependency:
    """
    FastAPI dependency for permission checking.

    Usage:
        @app.get("/files", dependencies=[Depends(PermissionDependency("files:read"))])
        async def list_files():
            ...
    """

    def __init__(self, *permissions: Union[str, Permission], require_all: bool = False):
        self.permissions = [permission_id(p) for p in permissions]
        self.require_all = require_all

    def __call__(
        self,
        request: Request,
        provider: AuthorizationProvider = Depends(get_provider),
    ) -> bool:
        user_id = getattr(request.state, "user_id", None)
        _check(provider, user_id, self.permissions, self.require_all)
        return True


def require_permission(*permissions: Union[str, Permission], require_all: bool = False):
    """
    Decorator factory for FastAPI endpoints requiring specific permissions.

    The endpoint must accept a ``request: Request`` argument.

    Usage:
        @app.delete("/files/{name}")
        @require_permission("files:delete")
        async def delete_file(name: str, request: Request):
            ...
    """
    perm_strs = [permission_id(p) for p in permissions]

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = kwargs.get("request")
            if request is None:
                for arg in args:
                    if isinstance(arg, Request):
                        request = arg
                        break
            if request is None:
                raise RuntimeError(f"{func.__name__} must accept a Request to use require_permission")

            user_id = getattr(request.state, "user_id", None)
            # Resolution blocks on storage and must not run on the event loop
            await run_in_threadpool(_check, get_provider(), user_id, perm_strs, require_all)
            return await func(*args, **kwargs)

        return wrapper
    return decorator
