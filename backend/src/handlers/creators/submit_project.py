"""
Submit Project Handler (creator workspace).
POST /creators/projects/{projectId}/submit
Body: { "deliverableUrl", "notes"? }

Completes the request and notifies the organization with
project.completed and request.status_changed.
"""
from shared.errors import FulfillmentError
from shared.logging import logger, log_event
from shared.services import get_services
from shared.utils import error_response, format_response, get_path_param, internal_error, parse_body


def handler(event, context):
    log_event(event)

    try:
        body = parse_body(event)
        project = get_services().workflow.submit_project(
            get_path_param(event, 'projectId'),
            body.get('deliverableUrl'),
            body.get('notes')
        )

        return format_response(200, {'success': True, 'data': project})

    except FulfillmentError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error submitting project: {e}")
        return internal_error('Failed to submit project')
