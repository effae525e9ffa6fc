"""
Health checks for the local vault, the remote mirror and the Bedrock model.
"""

import os
from pathlib import Path
from typing import Any, Callable, Dict

from .bedrock_llm import BedrockLLM
from .config import config
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def _probe(service: str, check: Callable[[], bool], **details) -> Dict[str, Any]:
    try:
        return {'healthy': bool(check()), 'service': service, **details}
    except Exception as e:
        logger.warning(f'{service} health probe failed: {e}')
        return {'healthy': False, 'service': service, 'error': str(e), **details}


def _vault_writable() -> bool:
    data_dir = Path(config.vault.data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    return os.access(data_dir, os.W_OK)


def get_health_status(include_llm: bool = True) -> Dict[str, Any]:
    """Get detailed health status of each component.

    A disabled mirror is reported healthy with enabled=False, since the local
    vault alone is a complete deployment.

    Args:
        include_llm: Also probe the Bedrock model (costs one small request)

    Returns:
        Dictionary keyed by component name
    """
    status = {
        'local_vault': _probe('Local encrypted vault', _vault_writable, path=str(Path(config.vault.data_dir).resolve()))
    }

    if config.opensearch.enabled:
        status['opensearch'] = _probe('Amazon OpenSearch',
                                      lambda: OpenSearchClient(config.opensearch).health_check(),
                                      enabled=True,
                                      endpoint=config.opensearch.endpoint)
    else:
        status['opensearch'] = {'healthy': True, 'service': 'Amazon OpenSearch', 'enabled': False}

    if include_llm:
        status['bedrock_llm'] = _probe('Amazon Bedrock LLM',
                                       lambda: BedrockLLM(config.bedrock_llm).health_check(),
                                       model=config.bedrock_llm.model_id)
    return status


def check_health(include_llm: bool = True) -> bool:
    """True if every probed component is healthy."""
    status = get_health_status(include_llm)
    unhealthy = [name for name, component in status.items() if not component.get('healthy', False)]
    if unhealthy:
        logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')
        return False
    logger.info('All system components are healthy')
    return True


def get_system_info() -> Dict[str, Any]:
    return {
        'service_name': 'LifeStory',
        'version': '1.0.0',
        'configuration': {
            'data_dir': config.vault.data_dir,
            'mirror_enabled': config.opensearch.enabled,
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status(include_llm=False)
    }
