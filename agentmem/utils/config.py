"""
Configuration management for AWS services and memory engine settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    timeout_seconds: int


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float
    timeout_seconds: int
    enabled: bool


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_prefix: str
    dimension: int
    service: str  # 'es' for managed domains, 'aoss' for serverless collections


@dataclass
class MemoryEngineConfig:
    """Configuration for the memory engine batch jobs and digest."""
    default_tier: str
    consolidation_dwell_days: int
    min_events_per_sender: int
    max_profile_events: int
    unconsolidated_batch_size: int
    min_log_length: int
    digest_char_budget: int
    digest_ttl_seconds: int
    batch_time_limit_seconds: int
    batch_workers: int
    sync_enrichment: bool


@dataclass
class HostAppConfig:
    """Configuration for the host application that owns instances and logs."""
    app_url: str
    internal_secret: str
    log_fetch_timeout: float


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    memory: MemoryEngineConfig
    host_app: HostAppConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Extraction calls are capped well below the batch wall-clock limit
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '2048')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '2')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          timeout_seconds=int(os.getenv('BEDROCK_LLM_TIMEOUT_SECONDS', '25')))

    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')),
                                              timeout_seconds=int(os.getenv('BEDROCK_EMBED_TIMEOUT_SECONDS', '25')),
                                              enabled=_env_bool('BEDROCK_EMBED_ENABLED', 'true'))

    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'))

    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_prefix=os.getenv('OPENSEARCH_INDEX_PREFIX', 'agent_memory'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'es'))

    memory_config = MemoryEngineConfig(default_tier=os.getenv('MEMORY_DEFAULT_TIER', 'STANDARD'),
                                       consolidation_dwell_days=int(os.getenv('MEMORY_CONSOLIDATION_DWELL_DAYS', '7')),
                                       min_events_per_sender=int(os.getenv('MEMORY_MIN_EVENTS_PER_SENDER', '3')),
                                       max_profile_events=int(os.getenv('MEMORY_MAX_PROFILE_EVENTS', '20')),
                                       unconsolidated_batch_size=int(os.getenv('MEMORY_UNCONSOLIDATED_BATCH_SIZE', '200')),
                                       min_log_length=int(os.getenv('MEMORY_MIN_LOG_LENGTH', '100')),
                                       digest_char_budget=int(os.getenv('MEMORY_DIGEST_CHAR_BUDGET', '12000')),
                                       digest_ttl_seconds=int(os.getenv('MEMORY_DIGEST_TTL_SECONDS', '3600')),
                                       batch_time_limit_seconds=int(os.getenv('MEMORY_BATCH_TIME_LIMIT_SECONDS', '300')),
                                       batch_workers=int(os.getenv('MEMORY_BATCH_WORKERS', '1')),
                                       sync_enrichment=_env_bool('MEMORY_SYNC_ENRICHMENT', 'false'))

    host_app_config = HostAppConfig(app_url=os.getenv('APP_URL', 'http://localhost:3000').rstrip('/'),
                                    internal_secret=os.getenv('MEMORY_API_SECRET', ''),
                                    log_fetch_timeout=float(os.getenv('MEMORY_LOG_FETCH_TIMEOUT', '15')))

    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     memory=memory_config,
                     host_app=host_app_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
