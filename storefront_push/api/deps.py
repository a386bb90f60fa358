from __future__ import annotations

from fastapi import HTTPException, Request, status

from storefront_push.notifications.orchestrator import DeliveryService
from storefront_push.notifications.scheduler import NotificationScheduler
from storefront_push.resilience.circuit_breaker import CircuitBreakerRegistry


def _from_state(request: Request, name: str):
  value = getattr(request.app.state, name, None)
  if value is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Delivery engine is not initialised.")
  return value


def get_delivery_service(request: Request) -> DeliveryService:
  return _from_state(request, "delivery_service")


def get_scheduler(request: Request) -> NotificationScheduler:
  return _from_state(request, "scheduler")


def get_circuit_registry(request: Request) -> CircuitBreakerRegistry:
  return _from_state(request, "circuit_breakers")
