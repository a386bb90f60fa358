"""Internal routes that send notifications and run scheduler ticks."""

from __future__ import annotations

import datetime
import logging
from typing import Annotated

from fastapi import APIRouter, Body, Depends, status

from storefront_push.api.deps import get_delivery_service, get_scheduler
from storefront_push.api.models import DeliveryRequestPayload, DeliveryResponse, TriggerPayload, TriggerResponse
from storefront_push.core.security import verify_task_secret
from storefront_push.notifications.orchestrator import DeliveryService
from storefront_push.notifications.scheduler import NotificationScheduler

router = APIRouter(dependencies=[Depends(verify_task_secret)])
logger = logging.getLogger(__name__)


@router.post("/send", status_code=status.HTTP_200_OK, response_model=DeliveryResponse)
async def send_notification(payload: DeliveryRequestPayload, delivery: Annotated[DeliveryService, Depends(get_delivery_service)]) -> DeliveryResponse:
  """Deliver one notification now; per-device failures are reported in the counts, not as errors."""
  summary = await delivery.deliver(payload.to_request())
  return DeliveryResponse(success=True, sent=summary.sent, failed=summary.failed, total=summary.total)


@router.post("/process", status_code=status.HTTP_200_OK, response_model=TriggerResponse)
async def process_notifications(scheduler: Annotated[NotificationScheduler, Depends(get_scheduler)], payload: Annotated[TriggerPayload | None, Body()] = None) -> TriggerResponse:
  """Run one scheduler tick; an empty body runs every rule."""
  mode = payload.mode if payload is not None else "all"
  logger.info("Scheduler tick requested mode=%s", mode)
  result = await scheduler.run(mode)
  timestamp = datetime.datetime.now(datetime.UTC).isoformat()
  return TriggerResponse(success=not result.errors, processed=result.processed(), errors=result.errors, timestamp=timestamp)
