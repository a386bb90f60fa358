"""Operational view of circuit breakers."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from storefront_push.api.deps import get_circuit_registry
from storefront_push.api.models import ForceStatePayload
from storefront_push.core.security import verify_task_secret
from storefront_push.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry

router = APIRouter(dependencies=[Depends(verify_task_secret)])
logger = logging.getLogger(__name__)


def _require(registry: CircuitBreakerRegistry, name: str) -> CircuitBreaker:
  breaker = registry.find(name)
  if breaker is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown circuit breaker: {name}")
  return breaker


@router.get("")
async def list_circuits(registry: Annotated[CircuitBreakerRegistry, Depends(get_circuit_registry)]) -> list[dict[str, Any]]:
  return [metrics.as_dict() for metrics in registry.all_metrics()]


@router.post("/{name}/reset")
async def reset_circuit(name: str, registry: Annotated[CircuitBreakerRegistry, Depends(get_circuit_registry)]) -> dict[str, Any]:
  breaker = _require(registry, name)
  breaker.reset()
  logger.info("Circuit reset via API name=%s", name)
  return breaker.metrics().as_dict()


@router.post("/{name}/state")
async def force_circuit_state(name: str, payload: ForceStatePayload, registry: Annotated[CircuitBreakerRegistry, Depends(get_circuit_registry)]) -> dict[str, Any]:
  breaker = _require(registry, name)
  breaker.force_state(payload.state)
  return breaker.metrics().as_dict()
