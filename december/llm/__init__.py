from december.llm.client import ModelClient, UpstreamRequestError
from december.llm.config import ActiveProviderConfig, load_active_provider_config
from december.llm.providers import (
    ConfigurationError,
    Provider,
    ProviderNotFound,
    get_provider,
    list_providers,
    validate_provider,
)

__all__ = [
    "ActiveProviderConfig",
    "ConfigurationError",
    "ModelClient",
    "Provider",
    "ProviderNotFound",
    "UpstreamRequestError",
    "get_provider",
    "list_providers",
    "load_active_provider_config",
    "validate_provider",
]
