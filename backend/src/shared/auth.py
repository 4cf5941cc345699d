"""
Authentication utilities: resolves the X-API-Key header to an organization.
"""
from typing import Any, Dict, Optional

from .errors import AuthenticationError
from .organizations import OrganizationStore
from .utils import get_header

API_KEY_HEADER = 'X-API-Key'


def get_api_key(event: dict) -> Optional[str]:
    """
    Extract the organization API key from an API Gateway event.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        API key string or None if absent
    """
    key = get_header(event, API_KEY_HEADER)
    return key.strip() if key else None


class IdentityGate:
    """Sole translator from credential header to organization identity."""

    def __init__(self, organizations: OrganizationStore):
        self.organizations = organizations

    def resolve(self, api_key: Optional[str]) -> Dict[str, Any]:
        if not api_key:
            raise AuthenticationError('API key is required. Please provide X-API-Key header.')

        org = self.organizations.find_by_api_key(api_key)
        if not org:
            raise AuthenticationError('Invalid API key.')

        if not org.get('isActive', False):
            raise AuthenticationError('Organization account is inactive.', status_code=403)

        return org

    def authenticate(self, event: dict) -> Dict[str, Any]:
        """Resolve the organization for an API Gateway event."""
        return self.resolve(get_api_key(event))
