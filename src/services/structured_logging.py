"""
Structured JSON logging service for the checkout service.

Provides structured logging with:
- JSON format output when enabled
- Request context integration (request_id, provider event id/type)
- Consistent log structure across the application
- Webhook, checkout and entitlement event logging
- Configurable log levels and formats

Logs include: timestamp, level, message, request_id, method, path, status,
duration_ms, event_id, event_type and other contextual information.
"""

import os
import json
import logging
import time
from datetime import datetime, timezone
from flask import Flask, has_request_context
from src.services.request_context import get_request_context, get_request_id


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def __init__(self, json_enabled: bool = True):
        super().__init__()
        self.json_enabled = json_enabled

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON or plain text."""
        if not self.json_enabled:
            return super().format(record)

        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if has_request_context():
            log_entry.update(get_request_context())

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """Structured logger with request context integration."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_context(self, level: int, message: str, exc_info=None, **kwargs):
        """Log message with additional context."""
        extra_fields = kwargs.copy()

        if 'request_id' not in extra_fields and has_request_context():
            extra_fields['request_id'] = get_request_id()

        self.logger.log(level, message, exc_info=exc_info,
                        extra={'extra_fields': extra_fields})

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self._log_with_context(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._log_with_context(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self._log_with_context(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message."""
        self._log_with_context(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log error message with the active exception's traceback."""
        self._log_with_context(logging.ERROR, message, exc_info=True, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message."""
        self._log_with_context(logging.CRITICAL, message, **kwargs)

    def log_request_start(self, method: str, path: str, **kwargs):
        """Log request start."""
        self.info(
            f"Request started: {method} {path}",
            event_kind='request_start',
            method=method,
            path=path,
            **kwargs
        )

    def log_request_end(self, method: str, path: str, status_code: int, duration_ms: float, **kwargs):
        """Log request completion."""
        self.info(
            f"Request completed: {method} {path} - {status_code} ({duration_ms}ms)",
            event_kind='request_end',
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
            **kwargs
        )

    def log_webhook_event(self, event_type: str, outcome: str, **kwargs):
        """Log the result of handling one provider webhook event."""
        level = logging.DEBUG if outcome == 'duplicate' else logging.INFO
        self._log_with_context(
            level,
            f"Webhook {event_type}: {outcome}",
            event_kind='webhook',
            webhook_type=event_type,
            outcome=outcome,
            **kwargs
        )

    def log_entitlement_change(self, customer_id: str, change: str, **kwargs):
        """Log a grant, park, restore or revoke of a customer's entitlements."""
        level = logging.WARNING if change in ('suspended', 'revoked') else logging.INFO
        self._log_with_context(
            level,
            f"Entitlements {change} for customer {customer_id}",
            event_kind='entitlements',
            customer_id=customer_id,
            change=change,
            **kwargs
        )


def get_logger(name: str) -> StructuredLogger:
    """Get structured logger instance."""
    return StructuredLogger(name)


def configure_logging(app: Flask):
    """Configure structured logging for Flask application."""
    json_enabled = os.environ.get('CHECKOUT_LOG_JSON', 'true').lower() == 'true'
    log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(StructuredFormatter(json_enabled=json_enabled))
    root_logger.addHandler(console_handler)

    app.logger.setLevel(getattr(logging, log_level, logging.INFO))

    loggers_to_configure = [
        'checkout.webhooks',
        'checkout.subscriptions',
        'checkout.entitlements',
        'checkout.storage',
        'checkout.notifier',
    ]

    for logger_name in loggers_to_configure:
        logger = logging.getLogger(logger_name)
        logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Stripe's own logger is chatty at INFO
    logging.getLogger('stripe').setLevel(logging.WARNING)

    config_logger = get_logger('checkout.config')
    config_logger.info(
        "Logging configured",
        json_enabled=json_enabled,
        log_level=log_level,
        loggers_configured=loggers_to_configure
    )


class LoggingMiddleware:
    """Middleware for automatic request/response logging."""

    def __init__(self, app: Flask):
        self.app = app
        self.logger = get_logger('checkout.requests')

        app.before_request(self._before_request)
        app.after_request(self._after_request)

    def _before_request(self):
        """Log request start."""
        from flask import request

        if request.path in ['/healthz', '/readyz', '/metrics'] or request.path.startswith('/static/'):
            return

        self.logger.log_request_start(
            method=request.method,
            path=request.path,
            remote_addr=request.remote_addr,
            user_agent=request.headers.get('User-Agent', ''),
            content_length=request.content_length
        )

    def _after_request(self, response):
        """Log request completion."""
        from flask import request, g

        if request.path in ['/healthz', '/readyz', '/metrics'] or request.path.startswith('/static/'):
            return response

        duration_ms = 0
        if hasattr(g, 'request_start_time'):
            duration_ms = round((time.time() - g.request_start_time) * 1000, 2)

        self.logger.log_request_end(
            method=request.method,
            path=request.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            content_length=response.content_length
        )

        return response


def init_logging(app: Flask):
    """Initialize structured logging for Flask application."""
    configure_logging(app)

    LoggingMiddleware(app)

    startup_logger = get_logger('checkout.startup')
    startup_logger.info(
        "Application starting",
        debug=app.debug,
        testing=app.testing
    )
