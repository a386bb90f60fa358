"""Role audience lookups backed by the storefront `user_roles` table."""

from __future__ import annotations

import logging

from sqlalchemy import Text, cast, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_push.core.database import get_session_factory
from storefront_push.notifications.contracts import ROLE_ADMINS, ROLE_DELIVERY, AudienceResolver
from storefront_push.schema.commerce import UserRole

logger = logging.getLogger(__name__)

# Audience name -> storefront role values.
AUDIENCE_ROLES: dict[str, tuple[str, ...]] = {
  ROLE_ADMINS: ("admin", "super_admin"),
  ROLE_DELIVERY: ("delivery",),
}


class RoleAudienceRepository(AudienceResolver):
  async def resolve_audience(self, role: str) -> list[str]:
    """Return the distinct user ids holding any storefront role mapped to `role`."""
    roles = AUDIENCE_ROLES.get(role)
    if roles is None:
      raise ValueError(f"Unknown audience: {role}")

    session_factory = get_session_factory()
    if session_factory is None:
      return []

    async with session_factory() as session:
      return await self._resolve_with_session(session=session, roles=roles)

  async def _resolve_with_session(self, *, session: AsyncSession, roles: tuple[str, ...]) -> list[str]:
    stmt = select(UserRole.user_id).where(cast(UserRole.role, Text).in_(roles)).distinct()
    result = await session.execute(stmt)
    return [str(user_id) for user_id in result.scalars().all()]


class NullRoleAudienceRepository(RoleAudienceRepository):
  async def resolve_audience(self, role: str) -> list[str]:
    logger.debug("Role lookup disabled; audience=%s resolves to nobody", role)
    return []
