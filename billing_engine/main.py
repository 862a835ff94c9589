"""Application entrypoint."""

from __future__ import annotations

import uvicorn

from billing_engine.config import get_settings
from billing_engine.logging import configure_logging, logger
from billing_engine.web.app import create_app


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, json_logs=settings.environment != "dev")
    if settings.webhook.secret is None:
        # Every webhook delivery will be rejected until a secret is set.
        logger.warning("webhook_secret_missing", environment=settings.environment)

    app = create_app(settings=settings)
    logger.info("billing_engine_starting", environment=settings.environment, port=settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
