"""
Remove Webhook Handler.
DELETE /webhooks/register
Queued deliveries are not cancelled.
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
        services.organizations.clear_webhook_url(org['orgId'])

        return format_response(200, {
            'success': True,
            'message': 'Webhook URL removed successfully'
        })

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error removing webhook: {e}")
        return internal_error('Failed to remove webhook')
