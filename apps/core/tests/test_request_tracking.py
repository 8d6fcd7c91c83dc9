"""
Tests for request tracking middleware and the request_id logging filter.
"""
import logging

from django.http import HttpResponse
from django.test import RequestFactory, TestCase

from apps.core.middleware import (
    RequestIDLoggingFilter, RequestTrackingMiddleware, get_client_ip, get_request_id,
)


class RequestTrackingMiddlewareTestCase(TestCase):
    """Test request_id assignment and request logging."""

    def setUp(self):
        self.factory = RequestFactory()
        self.seen_request_ids = []

        def get_response(request):
            self.seen_request_ids.append(get_request_id())
            return HttpResponse('ok')

        self.middleware = RequestTrackingMiddleware(get_response)

    def test_generates_request_id(self):
        request = self.factory.get('/v1/rbac/roles')

        response = self.middleware(request)

        self.assertEqual(len(request.request_id), 32)
        self.assertEqual(response['X-Request-ID'], request.request_id)
        self.assertEqual(self.seen_request_ids, [request.request_id])
        self.assertIsNone(get_request_id())

    def test_honours_incoming_request_id(self):
        request = self.factory.get('/v1/rbac/roles', HTTP_X_REQUEST_ID='upstream-7')

        response = self.middleware(request)

        self.assertEqual(response['X-Request-ID'], 'upstream-7')

    def test_logs_start_and_completion(self):
        request = self.factory.get('/v1/rbac/roles')

        with self.assertLogs('apps.core.request_tracking', level='INFO') as logs:
            self.middleware(request)

        event_types = [record.event_type for record in logs.records]
        self.assertEqual(event_types, ['request_start', 'request_completion'])
        self.assertEqual(logs.records[1].status_code, 200)

    def test_logs_exceptions(self):
        request = self.factory.get('/v1/rbac/roles')
        self.middleware.process_request(request)

        with self.assertLogs('apps.core.request_tracking', level='ERROR') as logs:
            result = self.middleware.process_exception(request, RuntimeError('boom'))
        self.middleware.process_response(request, HttpResponse(status=500))

        self.assertIsNone(result)
        self.assertEqual(logs.records[0].exception_type, 'RuntimeError')


class ClientIPTestCase(TestCase):

    def setUp(self):
        self.factory = RequestFactory()

    def test_forwarded_for_wins(self):
        request = self.factory.get('/', HTTP_X_FORWARDED_FOR='203.0.113.5, 10.0.0.1', HTTP_X_REAL_IP='10.0.0.9')
        self.assertEqual(get_client_ip(request), '203.0.113.5')

    def test_real_ip(self):
        request = self.factory.get('/', HTTP_X_REAL_IP='10.0.0.9')
        self.assertEqual(get_client_ip(request), '10.0.0.9')

    def test_remote_addr(self):
        request = self.factory.get('/', REMOTE_ADDR='192.0.2.1')
        self.assertEqual(get_client_ip(request), '192.0.2.1')


class RequestIDLoggingFilterTestCase(TestCase):

    def _record(self):
        return logging.LogRecord('apps', logging.INFO, __file__, 1, 'msg', (), None)

    def test_adds_request_id_during_request(self):
        records = []

        def get_response(request):
            record = self._record()
            RequestIDLoggingFilter().filter(record)
            records.append(record)
            return HttpResponse()

        request = RequestFactory().get('/', HTTP_X_REQUEST_ID='req-5')
        RequestTrackingMiddleware(get_response)(request)

        self.assertEqual(records[0].request_id, 'req-5')

    def test_leaves_records_alone_outside_requests(self):
        record = self._record()
        self.assertTrue(RequestIDLoggingFilter().filter(record))
        self.assertFalse(hasattr(record, 'request_id'))
