"""
Find Matches Handler (creator workspace).
GET /creators/match/{requestId}
Ranked creators by skill overlap, then rating.
"""
from shared.errors import FulfillmentError
from shared.logging import logger, log_event
from shared.services import get_services
from shared.utils import error_response, format_response, get_path_param, internal_error


def handler(event, context):
    log_event(event)

    try:
        matches = get_services().workflow.find_matches(get_path_param(event, 'requestId'))
        return format_response(200, {'success': True, 'data': matches})

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error finding matching creators: {e}")
        return internal_error('Failed to find matching creators')
