from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from storefront_push.config import Settings, get_settings

logger = logging.getLogger(__name__)


async def verify_task_secret(
  request: Request,
  settings: Annotated[Settings, Depends(get_settings)],
  authorization: str | None = Header(default=None),
  x_storefront_task_secret: str | None = Header(default=None),
) -> None:
  """Guard internal surfaces with the shared task secret (dedicated header or Bearer token)."""
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")

  header_valid = secrets.compare_digest(x_storefront_task_secret or "", settings.task_secret)
  bearer_valid = secrets.compare_digest(authorization or "", f"Bearer {settings.task_secret}")
  if not header_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt path=%s", request.url.path)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")
