"""Run the push delivery API with uvicorn: `python -m storefront_push`."""

import logging
import os

import uvicorn

logger = logging.getLogger("storefront_push.entrypoint")


def main() -> None:
  host = os.getenv("STOREFRONT_HOST", "0.0.0.0")
  port = int(os.getenv("STOREFRONT_PORT", "8003"))
  # The storefront's own migrations own the schema; this process never alters tables.
  logger.info("Starting push delivery API host=%s port=%d", host, port)
  uvicorn.run("storefront_push.main:app", host=host, port=port, server_header=False, proxy_headers=True)


if __name__ == "__main__":
  main()
