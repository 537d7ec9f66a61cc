"""
Health check utilities for the memory engine's backing services.
"""

from typing import Any, Callable, Dict

from .. import __version__
from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import config
from .instance_client import InstanceClient, InstanceClientError
from .logging_config import get_logger
from .neptune_client import NeptuneClient
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def _probe(service: str, detail: Dict[str, Any], check: Callable[[], bool]) -> Dict[str, Any]:
    try:
        healthy = check()
        return {'healthy': healthy, 'service': service, **detail}
    except Exception as e:
        return {'healthy': False, 'service': service, 'error': str(e)}


def _check_host_app() -> bool:
    try:
        InstanceClient(config.host_app).list_instances()
        return True
    except InstanceClientError as e:
        logger.error(f'Host application health check failed: {e}')
        return False


def check_health() -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status()
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All system components are healthy')
    else:
        unhealthy = [name for name, status in health_status.items() if not status.get('healthy', False)]
        logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')

    return all_healthy


def get_health_status() -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    return {
        'bedrock_llm':
        _probe('Amazon Bedrock LLM', {'model': config.bedrock_llm.model_id},
               lambda: BedrockLLM(config.bedrock_llm).health_check()),
        'bedrock_embed':
        _probe('Amazon Bedrock Embed', {
            'model': config.bedrock_embed.model_id,
            'enabled': config.bedrock_embed.enabled
        }, lambda: BedrockEmbed(config.bedrock_embed).health_check()),
        'neptune':
        _probe('Amazon Neptune', {'endpoint': config.neptune.endpoint},
               lambda: NeptuneClient(config.neptune).health_check()),
        'opensearch':
        _probe('Amazon OpenSearch', {'endpoint': config.opensearch.endpoint},
               lambda: OpenSearchClient(config.opensearch).health_check()),
        'host_app':
        _probe('Host application', {'url': config.host_app.app_url}, _check_host_app),
    }


def get_system_info() -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    return {
        'service_name': 'agentmem',
        'version': __version__,
        'configuration': {
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'bedrock_embed_model': config.bedrock_embed.model_id,
            'default_tier': config.memory.default_tier,
            'consolidation_dwell_days': config.memory.consolidation_dwell_days,
            'index_prefix': config.opensearch.index_prefix,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status()
    }
