"""
HTTP client for the host application that owns agent instances.

The host application serves raw transcript logs, the list of instances and
instance ownership. Calls authenticate with the shared internal secret.
"""

from typing import List, Optional

import requests

from ..models.core import InstanceInfo
from .config import HostAppConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class InstanceClientError(Exception):
    """Custom exception for host application errors."""
    pass


class InstanceClient:
    """Client for the host application's internal instance API."""

    def __init__(self, config: HostAppConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({'x-internal-secret': config.internal_secret})

        logger.info(f'Initialized instance client for {config.app_url}')

    def _get(self, path: str, params: Optional[dict] = None) -> dict:
        url = f'{self.config.app_url}{path}'
        try:
            response = self.session.get(url, params=params, timeout=self.config.log_fetch_timeout)
            response.raise_for_status()
            return response.json()

        except requests.RequestException as e:
            logger.error(f'Request to {url} failed: {e}')
            raise InstanceClientError(f'Host application request failed: {e}')
        except ValueError as e:
            logger.error(f'Invalid JSON from {url}: {e}')
            raise InstanceClientError(f'Host application returned invalid JSON: {e}')

    def fetch_instance_logs(self, instance_id: str) -> str:
        """
        Fetch recent raw transcript logs for an instance. Best effort.

        Returns:
            Log text, or '' when the logs cannot be fetched
        """
        try:
            data = self._get('/api/instance/logs', params={'instanceId': instance_id})
        except InstanceClientError as e:
            logger.warning(f'Could not fetch logs for {instance_id}: {e}')
            return ''

        logs = data.get('logs', '')
        if isinstance(logs, list):
            return '\n'.join(str(line) for line in logs)
        return str(logs or '')

    def list_instances(self) -> List[InstanceInfo]:
        """
        List every instance with its status and memory flags.

        Raises:
            InstanceClientError: If the host application cannot be reached
        """
        data = self._get('/api/internal/memory/instances')

        instances = []
        for item in data.get('instances', []):
            if not isinstance(item, dict) or not item.get('id'):
                continue
            instances.append(
                InstanceInfo(instance_id=str(item['id']),
                             status=str(item.get('status', '')),
                             memory_enabled=bool(item.get('memoryEnabled', False)),
                             network_enabled=bool(item.get('browserEnabled', False))))
        return instances

    def get_instance(self, instance_id: str) -> Optional[InstanceInfo]:
        for instance in self.list_instances():
            if instance.instance_id == instance_id:
                return instance
        return None

    def is_owner(self, instance_id: str, user_email: str) -> bool:
        """Check whether a signed-in user owns an instance."""
        try:
            data = self._get('/api/internal/memory/owner', params={'instanceId': instance_id, 'email': user_email})
        except InstanceClientError as e:
            logger.warning(f'Ownership check failed for {instance_id}: {e}')
            return False
        return bool(data.get('owner', False))
