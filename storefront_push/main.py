from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from storefront_push.api.routes import circuits, notifications
from storefront_push.core.exceptions import global_exception_handler, http_exception_handler, request_validation_exception_handler, subscription_lookup_exception_handler
from storefront_push.core.lifespan import lifespan
from storefront_push.core.middleware import RequestLoggingMiddleware
from storefront_push.notifications.contracts import SubscriptionLookupError


def create_app() -> FastAPI:
  app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

  app.add_exception_handler(Exception, global_exception_handler)
  app.add_exception_handler(HTTPException, http_exception_handler)
  app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
  app.add_exception_handler(SubscriptionLookupError, subscription_lookup_exception_handler)

  app.add_middleware(RequestLoggingMiddleware)

  @app.get("/health", include_in_schema=False)
  async def health_check() -> dict[str, str]:
    return {"status": "ok"}

  app.include_router(notifications.router, prefix="/internal/notifications", tags=["notifications"])
  app.include_router(circuits.router, prefix="/internal/circuits", tags=["circuits"])
  return app


app = create_app()
