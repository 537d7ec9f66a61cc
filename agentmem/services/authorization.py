"""
Authorization for memory operations on an instance.

Two credential kinds are accepted: a signed-in user's email (checked against
instance ownership by the host application) and the instance's memory API key
presented as a bearer token. CompositeAuthorizer tries them in a fixed order.
"""

from dataclasses import dataclass
from typing import List, Optional

from ..utils.instance_client import InstanceClient
from ..utils.logging_config import get_logger
from .config_store import ConfigStore
from .memory_management import MemoryAuthorizationError

logger = get_logger(__name__)

BEARER_PREFIX = 'Bearer '


@dataclass
class Credentials:
    """What a caller presented. Either field may be missing."""
    user_email: Optional[str] = None
    authorization: Optional[str] = None  # Raw Authorization header value


class Authorizer:
    """Decides whether credentials grant access to an instance's memory."""

    name = 'base'

    def authorize(self, instance_id: str, credentials: Credentials) -> bool:
        raise NotImplementedError


class SessionAuthorizer(Authorizer):
    """Grants access to the signed-in owner of the instance."""

    name = 'session'

    def __init__(self, instances: InstanceClient):
        self.instances = instances

    def authorize(self, instance_id: str, credentials: Credentials) -> bool:
        if not credentials.user_email:
            return False
        return self.instances.is_owner(instance_id, credentials.user_email)


class BearerKeyAuthorizer(Authorizer):
    """Grants access to callers presenting the instance's current memory API key."""

    name = 'bearer'

    def __init__(self, configs: ConfigStore):
        self.configs = configs

    @staticmethod
    def parse_bearer(header: Optional[str]) -> Optional[str]:
        if not header or not header.startswith(BEARER_PREFIX):
            return None
        token = header[len(BEARER_PREFIX):].strip()
        return token or None

    def authorize(self, instance_id: str, credentials: Credentials) -> bool:
        api_key = self.parse_bearer(credentials.authorization)
        if api_key is None:
            return False
        return self.configs.verify_api_key(instance_id, api_key)


class CompositeAuthorizer:
    """Tries each authorizer in order; the first that grants access wins."""

    def __init__(self, authorizers: List[Authorizer]):
        self.authorizers = authorizers

    def require(self, instance_id: str, credentials: Credentials) -> str:
        """
        Authorize a caller or raise.

        Returns:
            Name of the authorizer that granted access

        Raises:
            MemoryAuthorizationError: If no authorizer grants access
        """
        for authorizer in self.authorizers:
            if authorizer.authorize(instance_id, credentials):
                logger.debug(f'Access to instance {instance_id} granted by {authorizer.name} authorizer')
                return authorizer.name

        logger.warning(f'Unauthorized memory access attempt for instance {instance_id}')
        raise MemoryAuthorizationError('Unauthorized')
