"""
Common utility functions for Lambda handlers.
"""
import json
import math
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .config import config
from .errors import FulfillmentError, ValidationError


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types from DynamoDB."""

    def default(self, o):
        if isinstance(o, Decimal):
            # Convert to int if it's a whole number, otherwise float
            if o % 1 == 0:
                return int(o)
            return float(o)
        if isinstance(o, (set, frozenset)):
            return sorted(o)
        return super().default(o)


def to_json(value: Any) -> str:
    return json.dumps(value, cls=DecimalEncoder)


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def format_response(
    status_code: int,
    body: Any,
    headers: Dict[str, str] = None
) -> Dict[str, Any]:
    """
    Format a standard API Gateway response with CORS headers.

    Args:
        status_code: HTTP status code
        body: Response body (will be JSON serialized)
        headers: Additional headers to include

    Returns:
        API Gateway response dict
    """
    default_headers = {
        'Access-Control-Allow-Origin': '*',
        'Access-Control-Allow-Credentials': True,
        'Content-Type': 'application/json'
    }

    if headers:
        default_headers.update(headers)

    return {
        'statusCode': status_code,
        'headers': default_headers,
        'body': to_json(body)
    }


def error_response(error: FulfillmentError) -> Dict[str, Any]:
    """API Gateway response for a workflow error."""
    return format_response(error.status_code, error.to_dict())


def internal_error(message: str) -> Dict[str, Any]:
    """Generic 500 that exposes no store or stack detail."""
    return format_response(500, {'error': 'InternalError', 'message': message})


def parse_body(event: dict) -> dict:
    """
    Parse JSON body from API Gateway event.

    Raises:
        ValidationError: if the body is not a JSON object
    """
    body = event.get('body') or '{}'
    if isinstance(body, dict):
        return body
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        raise ValidationError('Request body must be valid JSON')
    if not isinstance(parsed, dict):
        raise ValidationError('Request body must be a JSON object')
    return parsed


def get_path_param(event: dict, param_name: str) -> str:
    """Extract path parameter from event."""
    try:
        return event['pathParameters'][param_name]
    except (KeyError, TypeError):
        return None


def get_query_param(event: dict, param_name: str, default: str = None) -> str:
    """Extract query string parameter from event."""
    params = event.get('queryStringParameters') or {}
    return params.get(param_name, default)


def get_header(event: dict, header_name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    headers = event.get('headers') or {}
    wanted = header_name.lower()
    for name, value in headers.items():
        if name.lower() == wanted:
            return value
    return None


def parse_pagination(event: dict, default_limit: int = None) -> Tuple[int, int]:
    """Read page/limit query parameters (1-based page)."""
    default_limit = default_limit or config.DEFAULT_PAGE_SIZE
    try:
        page = int(get_query_param(event, 'page', '1'))
        limit = int(get_query_param(event, 'limit', str(default_limit)))
    except (TypeError, ValueError):
        raise ValidationError('page and limit must be integers')
    if page < 1 or limit < 1:
        raise ValidationError('page and limit must be positive')
    return page, min(limit, config.MAX_PAGE_SIZE)


def paginate(items: List[Any], page: int, limit: int) -> Tuple[List[Any], Dict[str, int]]:
    """Slice an already sorted list and build pagination metadata."""
    total = len(items)
    start = (page - 1) * limit
    return items[start:start + limit], {
        'page': page,
        'limit': limit,
        'total': total,
        'pages': math.ceil(total / limit) if limit else 0,
    }


def normalize_text(text: str) -> str:
    """
    Normalize text for comparison.
    Converts to lowercase and collapses whitespace.
    """
    if not text:
        return ''
    text = str(text).lower().strip()
    text = re.sub(r'\s+', ' ', text)
    return text
