"""
List Webhook Events Handler.
GET /webhooks/events?status=&page=&limit=
Delivery records of the authenticated organization, newest first.
"""
from shared.errors import FulfillmentError, ValidationError
from shared.logging import logger, log_event
from shared.models import DeliveryStatus
from shared.services import get_services
from shared.utils import error_response, format_response, get_query_param, internal_error, parse_pagination


def handler(event, context):
    log_event(event)

    try:
        services = get_services()
        org = services.identity.authenticate(event)
        page, limit = parse_pagination(event, default_limit=20)

        status = get_query_param(event, 'status')
        if status and status not in {s.value for s in DeliveryStatus}:
            raise ValidationError(f"Unknown delivery status: {status}")

        records, pagination = services.deliveries.list_for_org(org['orgId'], status, page, limit)

        return format_response(200, {
            'success': True,
            'data': records,
            'pagination': pagination
        })

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching webhook events: {e}")
        return internal_error('Failed to fetch webhook events')
