"""
Register Webhook Handler.
POST /webhooks/register
Body: { "webhookUrl": "https://..." }
Registers or replaces the organization's single endpoint.
"""
from shared.errors import FulfillmentError
from shared.logging import logger, log_event
from shared.services import get_services
from shared.utils import error_response, format_response, internal_error, parse_body


def handler(event, context):
    log_event(event)

    try:
        services = get_services()
        org = services.identity.authenticate(event)
        body = parse_body(event)

        updated = services.organizations.set_webhook_url(org['orgId'], body.get('webhookUrl'))

        return format_response(200, {
            'success': True,
            'message': 'Webhook URL registered successfully',
            'data': updated
        })

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error registering webhook: {e}")
        return internal_error('Failed to register webhook')
