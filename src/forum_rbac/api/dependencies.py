"""FastAPI integration: permission dependencies and in-handler checks.

Both expect upstream middleware to set ``request.state.user_id`` and
``request.state.db_session``; ``request.state.user_created_at`` is used for
``accountAge`` conditions when present. When the factory is given a
:class:`BanService`, banned users are refused with 403 before any
permission is checked.

Route gates run without a resource context, so ``own`` and ``categories``
conditions are skipped there; handlers that have loaded the resource call
:meth:`PermissionDependencyFactory.enforce_permission` with its owner and
category.
"""

import dataclasses
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from forum_rbac.api.schemas import DenialDetail
from forum_rbac.rbac.bans import BanService
from forum_rbac.rbac.service import PermissionService
from forum_rbac.rbac.types import DenialCode, PermissionContext, PermissionDecision

logger = logging.getLogger(__name__)

# Denials that reveal whether a resource exists; on read permissions they become 404.
_HIDDEN_DENIALS = frozenset({DenialCode.NOT_OWNER, DenialCode.CATEGORY_NOT_ALLOWED})


def _is_read_permission(slug: str) -> bool:
    return slug.rsplit(".", 1)[-1] == "read"


def _denial_detail(decision: PermissionDecision) -> dict[str, str]:
    return DenialDetail(code=str(decision.code), reason=decision.reason or "").model_dump()


def denial_to_http(slug: str, decision: PermissionDecision) -> HTTPException:
    """Map a denied decision on *slug* to the HTTP error the client sees."""
    if decision.code in _HIDDEN_DENIALS and _is_read_permission(slug):
        return HTTPException(status_code=404, detail="Not found")
    return HTTPException(status_code=403, detail=_denial_detail(decision))


class PermissionDependencyFactory:
    """Creates FastAPI dependencies that enforce RBAC permission checks.

    Usage::

        require_permission = PermissionDependencyFactory(service)

        @router.post("/topics", dependencies=[Depends(require_permission("topic.create"))])
        async def create_topic(): ...

        @router.get("/moderation")
        async def queue(user_id: int = Depends(require_permission("topic.approve", "post.approve", any_of=True))):
            ...
    """

    def __init__(self, service: PermissionService, bans: BanService | None = None) -> None:
        self._service = service
        self._bans = bans

    def __call__(self, *slugs: str, any_of: bool = False) -> Callable[..., Coroutine[Any, Any, int]]:
        """Return an async dependency that checks *slugs* and returns the user_id.

        All of *slugs* must be granted, or at least one when *any_of* is set.
        """
        if not slugs:
            raise ValueError("require_permission needs at least one permission slug")

        async def _dependency(request: Request) -> int:
            user_id, db_session = self._request_identity(request)
            await self._refuse_banned(user_id, db_session)
            context = PermissionContext(user_created_at=getattr(request.state, "user_created_at", None))

            denied = await self._first_denial(user_id, slugs, db_session, context, any_of=any_of)
            if denied is not None:
                slug, decision = denied
                logger.warning(
                    "Permission denied: user %d on '%s' (%s)",
                    user_id,
                    slug,
                    decision.code,
                    extra={"user_id": user_id, "permission": slug, "code": str(decision.code)},
                )
                raise HTTPException(status_code=403, detail=_denial_detail(decision))

            return user_id

        return _dependency

    async def enforce_permission(
        self,
        request: Request,
        slugs: str | tuple[str, ...],
        context: PermissionContext | None = None,
        *,
        any_of: bool = False,
    ) -> int:
        """Check *slugs* against a loaded resource; raise the mapped HTTP error on denial."""
        user_id, db_session = self._request_identity(request)
        await self._refuse_banned(user_id, db_session)
        slugs = (slugs,) if isinstance(slugs, str) else slugs

        context = context or PermissionContext()
        if context.user_created_at is None:
            context = dataclasses.replace(context, user_created_at=getattr(request.state, "user_created_at", None))

        denied = await self._first_denial(user_id, slugs, db_session, context, any_of=any_of)
        if denied is not None:
            slug, decision = denied
            logger.info("Denied user %d on '%s': %s", user_id, slug, decision.code)
            raise denial_to_http(slug, decision)
        return user_id

    async def _first_denial(
        self,
        user_id: int,
        slugs: tuple[str, ...],
        session: AsyncSession,
        context: PermissionContext,
        *,
        any_of: bool,
    ) -> tuple[str, PermissionDecision] | None:
        """Return the deciding denial, or ``None`` when access is granted."""
        last: tuple[str, PermissionDecision] | None = None
        for slug in slugs:
            decision = await self._service.check_permission_with_reason(user_id, slug, session, context)
            if any_of and decision.granted:
                return None
            if not decision.granted:
                last = (slug, decision)
                if not any_of:
                    return last
        return last

    async def _refuse_banned(self, user_id: int, session: AsyncSession) -> None:
        if self._bans is None:
            return
        status = await self._bans.check_ban_status(user_id, session)
        if status.is_banned:
            logger.info(
                "Refused banned user %d",
                user_id,
                extra={"user_id": user_id, "code": str(DenialCode.USER_BANNED)},
            )
            detail = DenialDetail(code=str(DenialCode.USER_BANNED), reason=status.message).model_dump()
            raise HTTPException(status_code=403, detail=detail)

    @staticmethod
    def _request_identity(request: Request) -> tuple[int, AsyncSession]:
        user_id: int | None = getattr(request.state, "user_id", None)
        if user_id is None:
            raise HTTPException(status_code=401, detail="Authentication required")

        db_session: AsyncSession | None = getattr(request.state, "db_session", None)
        if db_session is None:
            raise HTTPException(status_code=500, detail="Database session not available")
        return user_id, db_session
