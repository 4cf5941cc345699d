"""
Send Test Webhook Handler.
POST /webhooks/test
Delivers a webhook.test event synchronously and reports the outcome.
"""
from shared.errors import FulfillmentError
from shared.logging import logger, log_event
from shared.services import get_services
from shared.utils import error_response, format_response, internal_error


def handler(event, context):
    log_event(event)

    try:
        services = get_services()
        org = services.identity.authenticate(event)
        result = services.dispatcher.send_test(org['orgId'])

        return format_response(200, {
            'success': result['success'],
            'message': 'Test webhook delivered successfully' if result['success'] else 'Test webhook delivery failed',
            'data': result['record']
        })

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error testing webhook: {e}")
        return internal_error('Failed to test webhook')
