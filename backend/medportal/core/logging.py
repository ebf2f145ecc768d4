from __future__ import annotations

import logging
import sys
from typing import Optional

from .logging_redactor import RedactionFilter, install_redaction_filter

_configured = False


class _OneLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        return base.replace("\n", " | ")


def configure_logging(level: int = logging.INFO) -> None:
    global _configured
    logger = logging.getLogger()
    logger.setLevel(level)

    # Drop previously attached redaction filters/handlers so re-configuration stays idempotent
    for f in list(logger.filters):
        if isinstance(f, RedactionFilter):
            logger.removeFilter(f)
    for h in list(logger.handlers):
        if getattr(h, "_medportal_handler", False):
            logger.removeHandler(h)
        for f in list(h.filters):
            if isinstance(f, RedactionFilter):
                h.removeFilter(f)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_OneLineFormatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s"))
    handler._medportal_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    install_redaction_filter(logger)
    _configured = True

    # Quiet noisy libraries a bit
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not name:
        name = __name__
    if not _configured:
        configure_logging()
    return logging.getLogger(name)


def setup_sentry(environment: str, dsn: str | None = None) -> None:
    """Initialize Sentry error tracking when a DSN is configured.

    Skipped in dev/test environments. PII is never sent: doctor and patient
    emails stay out of events.
    """
    log = get_logger("medportal.core.logging")
    if not dsn or environment in ("dev", "development", "test", "testing", "local"):
        log.debug("[startup] Sentry disabled (missing DSN or dev/test env)")
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    def before_send(event, hint):
        # 404s are not errors
        if event.get("tags", {}).get("status_code") == 404:
            return None
        return event

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.WARNING),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        environment=environment,
        send_default_pii=False,
        before_send=before_send,
    )
    log.info("[startup] Sentry initialized for env=%s", environment)
