# -*- coding: utf-8 -*-
"""
Test suite for structured logging and request context propagation.

Tests request_id generation, webhook event context, structured logging
format, and integration with the Flask request lifecycle.
"""

import pytest
import json
import uuid
import logging
import io
from flask import Flask

from src.services.request_context import (
    init_request_context, get_request_id, get_request_context, set_event_context
)
from src.services.structured_logging import (
    StructuredLogger, StructuredFormatter, get_logger, init_logging
)


@pytest.fixture
def app():
    """Create test Flask app."""
    app = Flask(__name__)
    app.config['TESTING'] = True
    return app


def _capture(logger_name):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter(json_enabled=True))
    logger = logging.getLogger(logger_name)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    return stream, handler


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().strip().split('\n') if line]


def _record(msg='Test message', level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name='test.logger',
        level=level,
        pathname='test.py',
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info
    )


class TestRequestContextMiddleware:
    """Test request context middleware functionality."""

    def test_request_id_generation(self, app):
        init_request_context(app)

        @app.route('/test')
        def test_route():
            return {'request_id': get_request_id()}

        response = app.test_client().get('/test')
        assert response.status_code == 200

        request_id = response.get_json()['request_id']
        uuid.UUID(request_id)
        assert response.headers['X-Request-ID'] == request_id
        assert response.headers['X-Response-Time'].endswith('ms')

    def test_incoming_request_id_is_kept(self, app):
        init_request_context(app)

        @app.route('/test')
        def test_route():
            return {'request_id': get_request_id()}

        incoming = str(uuid.uuid4())
        response = app.test_client().get('/test', headers={'X-Request-ID': incoming})

        assert response.get_json()['request_id'] == incoming

    def test_malformed_request_id_is_replaced(self, app):
        init_request_context(app)

        @app.route('/test')
        def test_route():
            return {'request_id': get_request_id()}

        response = app.test_client().get('/test', headers={'X-Request-ID': 'not-a-uuid'})

        assert response.get_json()['request_id'] != 'not-a-uuid'

    def test_different_request_ids_for_different_requests(self, app):
        init_request_context(app)

        @app.route('/test')
        def test_route():
            return {'request_id': get_request_id()}

        client = app.test_client()
        request_ids = {client.get('/test').get_json()['request_id'] for _ in range(5)}

        assert len(request_ids) == 5

    def test_event_context_integration(self, app):
        """Webhook event id and type show up in the request context."""
        init_request_context(app)

        @app.route('/test', methods=['POST'])
        def test_route():
            set_event_context('evt_123', 'invoice.paid')
            return get_request_context()

        response = app.test_client().post('/test', json={})
        context = response.get_json()

        assert context['method'] == 'POST'
        assert context['path'] == '/test'
        assert context['event_id'] == 'evt_123'
        assert context['event_type'] == 'invoice.paid'

    def test_no_event_context_by_default(self, app):
        init_request_context(app)

        @app.route('/test')
        def test_route():
            return get_request_context()

        context = app.test_client().get('/test').get_json()

        assert 'event_id' not in context
        assert 'event_type' not in context


class TestStructuredFormatter:
    """Test structured logging formatter."""

    def test_json_formatting_enabled(self):
        data = json.loads(StructuredFormatter(json_enabled=True).format(_record()))

        assert data['level'] == 'INFO'
        assert data['logger'] == 'test.logger'
        assert data['message'] == 'Test message'
        assert data['line'] == 42
        assert 'timestamp' in data

    def test_json_formatting_disabled(self):
        formatted = StructuredFormatter(json_enabled=False).format(_record())

        with pytest.raises(json.JSONDecodeError):
            json.loads(formatted)
        assert 'Test message' in formatted

    def test_extra_fields_included(self):
        record = _record()
        record.extra_fields = {'customer_id': 'cus_1', 'outcome': 'applied'}

        data = json.loads(StructuredFormatter(json_enabled=True).format(record))

        assert data['customer_id'] == 'cus_1'
        assert data['outcome'] == 'applied'

    def test_exception_formatting(self):
        try:
            raise ValueError("Test exception")
        except ValueError:
            import sys
            record = _record('Error occurred', logging.ERROR, sys.exc_info())

        data = json.loads(StructuredFormatter(json_enabled=True).format(record))

        assert 'ValueError' in data['exception']
        assert 'Test exception' in data['exception']


class TestStructuredLogger:
    """Test structured logger functionality."""

    def test_log_levels(self):
        stream, handler = _capture('test.levels')
        logger = StructuredLogger('test.levels')

        logger.debug('Debug message')
        logger.info('Info message')
        logger.warning('Warning message')
        logger.error('Error message')
        logger.critical('Critical message')

        levels = [line['level'] for line in _lines(stream)]
        assert levels == ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

    def test_exception_includes_traceback(self):
        stream, handler = _capture('test.exception')
        logger = StructuredLogger('test.exception')

        try:
            raise RuntimeError("store unavailable")
        except RuntimeError:
            logger.exception('Handler failed', event_id='evt_1')

        line = _lines(stream)[0]
        assert line['level'] == 'ERROR'
        assert line['event_id'] == 'evt_1'
        assert 'store unavailable' in line['exception']

    def test_webhook_and_entitlement_events(self):
        stream, handler = _capture('test.events')
        logger = StructuredLogger('test.events')

        logger.log_webhook_event('invoice.paid', 'applied', event_id='evt_1')
        logger.log_webhook_event('invoice.paid', 'duplicate', event_id='evt_1')
        logger.log_entitlement_change('cus_1', 'suspended', invoice_id='in_1')
        logger.log_entitlement_change('cus_1', 'restored')

        lines = _lines(stream)
        assert [line['event_kind'] for line in lines] == [
            'webhook', 'webhook', 'entitlements', 'entitlements']
        assert [line['level'] for line in lines] == ['INFO', 'DEBUG', 'WARNING', 'INFO']
        assert lines[0]['outcome'] == 'applied'
        assert lines[2]['customer_id'] == 'cus_1'
        assert lines[2]['change'] == 'suspended'


class TestLoggingMiddleware:
    """Test logging middleware functionality."""

    def test_request_logging(self, app):
        init_request_context(app)
        init_logging(app)
        stream, handler = _capture('checkout.requests')

        @app.route('/test')
        def test_route():
            return {'message': 'test'}

        response = app.test_client().get('/test')
        assert response.status_code == 200

        kinds = [line['event_kind'] for line in _lines(stream)]
        assert kinds == ['request_start', 'request_end']

    def test_health_endpoints_not_logged(self, app):
        init_logging(app)
        stream, handler = _capture('checkout.requests')

        @app.route('/healthz')
        def healthz():
            return {'status': 'healthy'}

        app.test_client().get('/healthz')

        assert stream.getvalue() == ''


class TestLoggingIntegration:

    def test_get_logger_function(self):
        logger = get_logger('checkout.webhooks')

        assert isinstance(logger, StructuredLogger)
        assert logger.logger.name == 'checkout.webhooks'

    def test_stripe_logger_is_quieted(self, app):
        init_logging(app)

        assert logging.getLogger('stripe').level == logging.WARNING
