"""
Create Request Handler.
POST /requests
Body: { "title", "description", "requirements": {"skills": [...], ...}, "serviceType", "budget"?, "deadline"? }
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
        request = services.workflow.create_request(org['orgId'], parse_body(event))

        return format_response(201, {'success': True, 'data': request})

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error creating request: {e}")
        return internal_error('Failed to create request')
