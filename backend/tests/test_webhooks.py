"""
Tests for webhook delivery, retry and registration.
"""
import http.client
import json
import socket
import urllib.error
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from conftest import ORG_ID, QUIET_ORG_ID, WEBHOOK_URL
from shared.errors import NotFound, ValidationError
from shared.webhooks import WebhookDispatcher


def _response(status=200, body=b'{"ok": true}'):
    response = MagicMock()
    response.status = status
    response.read.return_value = body
    response.__enter__.return_value = response
    return response


def _record(services, event='request.status_changed', payload=None):
    return services.dispatcher.enqueue(ORG_ID, event, payload or {'requestId': 'req-1', 'newStatus': 'CANCELLED'})


class TestDeliver:

    def test_successful_delivery(self, services, org):
        record = _record(services)

        with patch('shared.webhooks.urllib.request.urlopen', return_value=_response()) as urlopen:
            assert services.dispatcher.deliver(record['eventId']) is True

        sent = urlopen.call_args[0][0]
        assert sent.full_url == WEBHOOK_URL
        assert sent.get_method() == 'POST'
        assert sent.get_header('Content-type') == 'application/json'
        assert sent.get_header('X-webhook-event') == 'request.status_changed'
        assert sent.get_header('X-webhook-delivery') == record['eventId']
        assert urlopen.call_args[1]['timeout'] == 10

        body = json.loads(sent.data)
        assert body['event'] == 'request.status_changed'
        assert body['data'] == {'requestId': 'req-1', 'newStatus': 'CANCELLED'}
        assert body['timestamp'] == record['createdAt']

        stored = services.deliveries.get(record['eventId'])
        assert stored['status'] == 'SUCCESS'
        assert stored['attempts'] == 1
        assert stored['deliveredAt']
        assert json.loads(stored['response'])['status'] == 200

    def test_timeout_then_retries_until_exhausted(self, services, org):
        record = _record(services)

        with patch('shared.webhooks.urllib.request.urlopen', side_effect=socket.timeout('timed out')) as urlopen:
            assert services.dispatcher.deliver(record['eventId']) is False
            stored = services.deliveries.get(record['eventId'])
            assert stored['status'] == 'FAILED'
            assert stored['attempts'] == 1
            assert stored['response'].startswith('Timed out')

            assert services.dispatcher.retry_failed(max_attempts=3) == {'checked': 1, 'succeeded': 0, 'failed': 1}
            assert services.dispatcher.retry_failed(max_attempts=3) == {'checked': 1, 'succeeded': 0, 'failed': 1}
            assert services.deliveries.get(record['eventId'])['attempts'] == 3

            assert services.dispatcher.retry_failed(max_attempts=3)['checked'] == 0
            assert services.dispatcher.deliver(record['eventId']) is False

        assert urlopen.call_count == 3
        assert services.deliveries.get(record['eventId'])['attempts'] == 3

    def test_retry_succeeds(self, services, org):
        record = _record(services)
        failure = urllib.error.HTTPError(WEBHOOK_URL, 500, 'Internal Server Error', {}, None)

        with patch('shared.webhooks.urllib.request.urlopen', side_effect=[failure, _response()]):
            services.dispatcher.deliver(record['eventId'])
            assert services.deliveries.get(record['eventId'])['response'] == 'HTTP 500: Internal Server Error'

            assert services.dispatcher.retry_failed() == {'checked': 1, 'succeeded': 1, 'failed': 0}

        stored = services.deliveries.get(record['eventId'])
        assert stored['status'] == 'SUCCESS'
        assert stored['attempts'] == 2

    def test_delivered_record_is_never_resent(self, services, org):
        record = _record(services)

        with patch('shared.webhooks.urllib.request.urlopen', return_value=_response()) as urlopen:
            services.dispatcher.deliver(record['eventId'])
            assert services.dispatcher.deliver(record['eventId']) is True
            assert services.dispatcher.retry_failed()['checked'] == 0

        assert urlopen.call_count == 1
        assert services.deliveries.get(record['eventId'])['attempts'] == 1

    def test_connection_refused(self, services, org):
        record = _record(services)
        error = urllib.error.URLError(ConnectionRefusedError(111, 'Connection refused'))

        with patch('shared.webhooks.urllib.request.urlopen', side_effect=error):
            assert services.dispatcher.deliver(record['eventId']) is False

        stored = services.deliveries.get(record['eventId'])
        assert stored['status'] == 'FAILED'
        assert stored['response'].startswith('Connection error')

    def test_long_response_is_truncated(self, services, org):
        record = _record(services)
        error = urllib.error.URLError('x' * 5000)

        with patch('shared.webhooks.urllib.request.urlopen', side_effect=error):
            services.dispatcher.deliver(record['eventId'])

        assert len(services.deliveries.get(record['eventId'])['response']) == 1024

    def test_unknown_record(self, services):
        assert services.dispatcher.deliver('missing') is False

    @pytest.mark.parametrize('error', [
        http.client.BadStatusLine('garbage not http'),
        http.client.IncompleteRead(b'{"ok"', 20),
    ])
    def test_malformed_response(self, services, org, error):
        record = _record(services)

        with patch('shared.webhooks.urllib.request.urlopen', side_effect=error):
            assert services.dispatcher.deliver(record['eventId']) is False

        stored = services.deliveries.get(record['eventId'])
        assert stored['status'] == 'FAILED'
        assert stored['attempts'] == 1
        assert stored['response'].startswith('Invalid HTTP response')

    def test_unexpected_error_is_recorded(self, services, org):
        record = _record(services)

        with patch.object(services.dispatcher, '_post', side_effect=RuntimeError('socket closed')):
            assert services.dispatcher.deliver(record['eventId']) is False

        stored = services.deliveries.get(record['eventId'])
        assert stored['status'] == 'FAILED'
        assert 'RuntimeError' in stored['response']

    def test_malformed_response_does_not_stop_sweeps(self, services, org):
        failed = [_record(services), _record(services)]
        pending = _record(services)
        with patch('shared.webhooks.urllib.request.urlopen', side_effect=socket.timeout()):
            for record in failed:
                services.dispatcher.deliver(record['eventId'])

        with patch('shared.webhooks.urllib.request.urlopen', side_effect=http.client.BadStatusLine('garbage')):
            retried = services.dispatcher.retry_failed()
            swept = services.dispatcher.deliver_stale_pending(older_than_minutes=0)

        assert retried == {'checked': 2, 'succeeded': 0, 'failed': 2}
        assert swept == {'checked': 1, 'succeeded': 0, 'failed': 1}
        assert services.deliveries.get(pending['eventId'])['status'] == 'FAILED'

    def test_zero_attempts_is_respected(self, services, org):
        dispatcher = WebhookDispatcher(services.deliveries, services.organizations, max_attempts=0)
        record = _record(services)

        with patch('shared.webhooks.urllib.request.urlopen', return_value=_response()) as urlopen:
            assert dispatcher.deliver(record['eventId']) is False
            assert dispatcher.retry_failed(max_attempts=0)['checked'] == 0

        urlopen.assert_not_called()
        assert dispatcher.max_attempts == 0
        assert services.deliveries.get(record['eventId'])['attempts'] == 0


class TestNotify:

    def test_no_endpoint_is_a_noop(self, services, quiet_org):
        assert services.dispatcher.notify(QUIET_ORG_ID, 'request.status_changed', {}) is None
        services.dispatcher.schedule.assert_not_called()

    def test_store_failure_is_swallowed(self, services, org, request_fields):
        with patch.object(services.deliveries, 'create', side_effect=RuntimeError('table unavailable')):
            request = services.workflow.create_request(ORG_ID, request_fields)
            cancelled = services.workflow.change_request_status(ORG_ID, request['requestId'], 'CANCELLED')

        assert cancelled['status'] == 'CANCELLED'
        services.dispatcher.schedule.assert_not_called()

    def test_queue_hand_off(self, services, org):
        dispatcher = WebhookDispatcher(
            services.deliveries, services.organizations, queue_url='https://sqs.example/queue'
        )

        with patch('shared.webhooks.send_message', return_value=True) as send:
            record = dispatcher.notify(ORG_ID, 'request.status_changed', {'requestId': 'req-1'})

        send.assert_called_once_with('https://sqs.example/queue', {'eventId': record['eventId']})
        assert services.deliveries.get(record['eventId'])['status'] == 'PENDING'

    def test_in_process_hand_off(self, services, org):
        dispatcher = WebhookDispatcher(services.deliveries, services.organizations, queue_url='')

        with patch('shared.webhooks.urllib.request.urlopen', return_value=_response()):
            record = dispatcher.notify(ORG_ID, 'request.status_changed', {'requestId': 'req-1'})
            dispatcher.shutdown(wait=True)

        assert services.deliveries.get(record['eventId'])['status'] == 'SUCCESS'

    def test_lost_hand_off_is_swept(self, services, org):
        record = _record(services)

        with patch('shared.webhooks.urllib.request.urlopen', return_value=_response()):
            assert services.dispatcher.deliver_stale_pending(older_than_minutes=60)['checked'] == 0
            result = services.dispatcher.deliver_stale_pending(older_than_minutes=0)

        assert result == {'checked': 1, 'succeeded': 1, 'failed': 0}
        assert services.deliveries.get(record['eventId'])['status'] == 'SUCCESS'

    def test_unrecorded_attempts_do_not_block_sweep(self, services, org):
        """Records whose results were never written are closed and skipped."""
        stuck = [_record(services), _record(services)]
        store_down = ClientError({'Error': {'Code': 'InternalServerError', 'Message': 'unavailable'}}, 'UpdateItem')
        with patch('shared.webhooks.urllib.request.urlopen', return_value=_response()), \
                patch.object(services.deliveries, 'record_result', side_effect=store_down):
            for record in stuck:
                for _ in range(3):
                    assert services.dispatcher.deliver(record['eventId']) is False

        for record in stuck:
            stored = services.deliveries.get(record['eventId'])
            assert (stored['status'], stored['attempts']) == ('PENDING', 3)

        fresh = _record(services)
        with patch('shared.webhooks.urllib.request.urlopen', return_value=_response()):
            result = services.dispatcher.deliver_stale_pending(older_than_minutes=0, batch_size=2)

        assert result == {'checked': 1, 'succeeded': 1, 'failed': 0}
        assert services.deliveries.get(fresh['eventId'])['status'] == 'SUCCESS'

        assert services.dispatcher.deliver(stuck[0]['eventId']) is False
        closed = services.deliveries.get(stuck[0]['eventId'])
        assert closed['status'] == 'FAILED'
        assert closed['attempts'] == 3
        assert services.dispatcher.retry_failed()['checked'] == 0


class TestTestWebhook:

    def test_send_test(self, services, org):
        with patch('shared.webhooks.urllib.request.urlopen', return_value=_response()):
            result = services.dispatcher.send_test(ORG_ID)

        assert result['success'] is True
        assert result['record']['event'] == 'webhook.test'
        assert result['record']['payload']['message'] == 'This is a test webhook'

    def test_send_test_failure_is_reported(self, services, org):
        with patch('shared.webhooks.urllib.request.urlopen', side_effect=socket.timeout()):
            result = services.dispatcher.send_test(ORG_ID)

        assert result['success'] is False
        assert result['record']['status'] == 'FAILED'

    def test_send_test_without_endpoint(self, services, quiet_org):
        with pytest.raises(ValidationError):
            services.dispatcher.send_test(QUIET_ORG_ID)


class TestRegistration:

    def test_register_and_clear(self, services, quiet_org):
        view = services.organizations.set_webhook_url(QUIET_ORG_ID, ' https://hooks.quiet.example/in ')

        assert view == {'id': QUIET_ORG_ID, 'name': 'Quiet Studio', 'webhookUrl': 'https://hooks.quiet.example/in'}

        services.organizations.clear_webhook_url(QUIET_ORG_ID)
        assert 'webhookUrl' not in services.organizations.get(QUIET_ORG_ID)

    @pytest.mark.parametrize('url', [None, '', 'hooks.example.com', 'ftp://hooks.example.com', 'https://'])
    def test_rejects_invalid_url(self, services, org, url):
        with pytest.raises(ValidationError):
            services.organizations.set_webhook_url(ORG_ID, url)
        assert services.organizations.get(ORG_ID)['webhookUrl'] == WEBHOOK_URL

    def test_unknown_organization(self, services):
        with pytest.raises(NotFound):
            services.organizations.set_webhook_url('org-missing', 'https://hooks.example.com')

    def test_listing_by_status(self, services, org):
        first = _record(services)
        second = _record(services)
        with patch('shared.webhooks.urllib.request.urlopen', return_value=_response()):
            services.dispatcher.deliver(first['eventId'])

        delivered, pagination = services.deliveries.list_for_org(ORG_ID, 'SUCCESS', 1, 10)
        everything, _ = services.deliveries.list_for_org(ORG_ID, None, 1, 10)

        assert [r['eventId'] for r in delivered] == [first['eventId']]
        assert pagination['total'] == 1
        assert [r['eventId'] for r in everything] == [second['eventId'], first['eventId']]
