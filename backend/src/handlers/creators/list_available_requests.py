"""
List Available Requests Handler (creator workspace).
GET /creators/requests/available?serviceType=&page=&limit=
Returns requests still open to bids, newest first.
"""
from shared.errors import FulfillmentError
from shared.logging import logger, log_event
from shared.services import get_services
from shared.utils import error_response, format_response, get_query_param, internal_error, parse_pagination


def handler(event, context):
    log_event(event)

    try:
        page, limit = parse_pagination(event, default_limit=20)
        requests, pagination = get_services().workflow.list_available_requests(
            get_query_param(event, 'serviceType'),
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
        logger.error(f"Error listing available requests: {e}")
        return internal_error('Failed to fetch available requests')
