"""
Configuration management for the story vault, remote mirror and collaborator services.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class VaultConfig:
    """Configuration for the local encrypted vault."""
    data_dir: str
    key_prefix: str
    kdf_salt: str
    kdf_iterations: int


@dataclass
class IdentityConfig:
    """Configuration for the local-secret identity path."""
    local_vault_prefix: str
    passcode_salt: str
    passcode_iterations: int
    default_birth_year: int


@dataclass
class OpenSearchConfig:
    """Configuration for the OpenSearch remote mirror."""
    endpoint: str  # Empty endpoint disables the mirror
    port: int
    region: str
    index_name: str
    use_ssl: bool

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint and self.endpoint.strip())


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


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
    vault: VaultConfig
    identity: IdentityConfig
    opensearch: OpenSearchConfig
    bedrock_llm: BedrockLLMConfig
    mcp: MCPConfig


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Local vault configuration
    vault_config = VaultConfig(data_dir=os.getenv('LIFESTORY_DATA_DIR', '.lifestory'),
                               key_prefix=os.getenv('LIFESTORY_KEY_PREFIX', 'lifestory'),
                               kdf_salt=os.getenv('LIFESTORY_KDF_SALT', 'lifestory-vault-salt'),
                               kdf_iterations=int(os.getenv('LIFESTORY_KDF_ITERATIONS', '100000')))

    # Identity configuration
    identity_config = IdentityConfig(local_vault_prefix=os.getenv('LIFESTORY_LOCAL_VAULT_PREFIX', 'vault_'),
                                     passcode_salt=os.getenv('LIFESTORY_PASSCODE_SALT', 'lifestory-passcode-salt'),
                                     passcode_iterations=int(os.getenv('LIFESTORY_PASSCODE_ITERATIONS', '100000')),
                                     default_birth_year=int(os.getenv('LIFESTORY_DEFAULT_BIRTH_YEAR', '1974')))

    # Remote mirror configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', ''),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'lifestory'),
                                         use_ssl=_env_bool('OPENSEARCH_USE_SSL', 'true'))

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '4096')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.2')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     vault=vault_config,
                     identity=identity_config,
                     opensearch=opensearch_config,
                     bedrock_llm=bedrock_llm_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
