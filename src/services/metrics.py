# -*- coding: utf-8 -*-
"""
Service for managing Prometheus metrics.

Provides a centralized service for creating, registering, and collecting metrics.
Also includes middleware for automatically recording HTTP request metrics.
"""

import os
import re
import time
from typing import Optional
from flask import Flask, request, g, current_app, has_app_context
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import generate_latest

# Provider ids embedded in paths (sub_..., pi_..., cus_...)
_PROVIDER_ID = re.compile(r'^[a-z]{2,5}_[A-Za-z0-9]{6,}$')


def init_metrics(app: Flask) -> None:
    """Initialize metrics service and endpoints."""
    service = MetricsService()
    app.extensions['metrics'] = service

    if service.enabled:
        @app.before_request
        def before_request():
            g.start_time = time.time()

        @app.after_request
        def after_request(response):
            duration = time.time() - g.get('start_time', time.time())
            service.record_http_request(
                route=request.path,
                method=request.method,
                status_code=response.status_code,
                duration_seconds=duration
            )
            return response

        @app.route("/metrics")
        def metrics():
            return generate_latest(service.registry), 200, {
                'Content-Type': 'text/plain; version=0.0.4; charset=utf-8'}


def get_metrics_service() -> Optional['MetricsService']:
    """Get the metrics service instance from the current app context."""
    if has_app_context():
        return current_app.extensions.get('metrics')
    return None


class MetricsService:
    """Service for managing Prometheus metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize the metrics service."""
        self.enabled = os.environ.get(
            "CHECKOUT_METRICS_ENABLED",
            "true").lower() == "true"
        self.registry = registry if registry is not None else REGISTRY

        if self.enabled:
            self.http_requests_total = Counter(
                "checkout_http_requests_total",
                "Total number of HTTP requests.",
                ["route", "method", "status"],
                registry=self.registry
            )
            self.http_request_duration_seconds = Histogram(
                "checkout_http_request_duration_seconds",
                "Duration of HTTP requests in seconds.",
                ["route", "method"],
                registry=self.registry
            )
            self.webhook_events_total = Counter(
                "checkout_webhook_events_total",
                "Total number of provider webhook events received.",
                ["type", "outcome"],
                registry=self.registry
            )
            self.subscriptions_total = Counter(
                "checkout_subscriptions_total",
                "Subscription checkout attempts by result.",
                ["result"],
                registry=self.registry
            )
            self.promo_validations_total = Counter(
                "checkout_promo_validations_total",
                "Promotion code validations by result.",
                ["valid"],
                registry=self.registry
            )

    def record_http_request(
            self,
            route: str,
            method: str,
            status_code: int,
            duration_seconds: float):
        """Record an HTTP request."""
        if self.enabled:
            normalized_route = self._normalize_route(route)
            self.http_requests_total.labels(
                route=normalized_route,
                method=method,
                status=status_code).inc()
            self.http_request_duration_seconds.labels(
                route=normalized_route, method=method).observe(duration_seconds)

    def record_webhook_event(self, event_type: str, outcome: str):
        """Record the outcome of one webhook delivery."""
        if self.enabled:
            self.webhook_events_total.labels(type=event_type, outcome=outcome).inc()

    def record_subscription_attempt(self, result: str):
        """Record a checkout attempt (created, resumed, conflict, error)."""
        if self.enabled:
            self.subscriptions_total.labels(result=result).inc()

    def record_promo_validation(self, valid: bool):
        """Record a promotion code validation."""
        if self.enabled:
            self.promo_validations_total.labels(valid=str(bool(valid)).lower()).inc()

    def get_metrics(self) -> str:
        """Get metrics data as text."""
        if self.enabled:
            return generate_latest(self.registry).decode('utf-8')
        return ""

    def _normalize_route(self, route: str) -> str:
        parts = route.split('/')
        for i, part in enumerate(parts):
            if part.isdigit():
                parts[i] = '{id}'
            elif _PROVIDER_ID.match(part):
                parts[i] = '{provider_id}'
        return '/'.join(parts)
