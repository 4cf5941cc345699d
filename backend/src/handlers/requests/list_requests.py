"""
List Requests Handler.
GET /requests?status=&page=&limit=
Returns the authenticated organization's requests, newest first.
"""
from shared.errors import FulfillmentError
from shared.logging import logger, log_event
from shared.services import get_services
from shared.utils import error_response, format_response, get_query_param, internal_error, parse_pagination


def handler(event, context):
    log_event(event)

    try:
        services = get_services()
        org = services.identity.authenticate(event)
        page, limit = parse_pagination(event)

        requests, pagination = services.workflow.list_requests(
            org['orgId'],
            get_query_param(event, 'status'),
            page,
            limit
        )

        return format_response(200, {
            'success': True,
            'data': requests,
            'pagination': pagination
        })

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error listing requests: {e}")
        return internal_error('Failed to fetch requests')
