"""
Approve Project Handler.
POST /projects/{projectId}/approve
Body: { "notes"? }
"""
from shared.errors import FulfillmentError
from shared.logging import logger, log_event
from shared.services import get_services
from shared.utils import error_response, format_response, get_path_param, internal_error, parse_body


def handler(event, context):
    log_event(event)

    try:
        services = get_services()
        org = services.identity.authenticate(event)
        body = parse_body(event)

        project = services.workflow.approve_project(
            org['orgId'],
            get_path_param(event, 'projectId'),
            body.get('notes')
        )

        return format_response(200, {'success': True, 'data': project})

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error approving project: {e}")
        return internal_error('Failed to approve project')
