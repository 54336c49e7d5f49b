from keygen.registry.base import RegistryCenter
from keygen.registry.errors import (
    NodeNotFoundError,
    RegistryAuthError,
    RegistryCenterError,
    RegistryUnavailableError,
)
from keygen.registry.pool import (
    DEFAULT_REGISTRY_CENTER_TYPE,
    REGISTRY_CENTER_TYPES,
    RegistrySessionPool,
    get_session_pool,
    init_session_pool,
)

__all__ = [
    "DEFAULT_REGISTRY_CENTER_TYPE",
    "NodeNotFoundError",
    "REGISTRY_CENTER_TYPES",
    "RegistryAuthError",
    "RegistryCenter",
    "RegistryCenterError",
    "RegistrySessionPool",
    "RegistryUnavailableError",
    "get_session_pool",
    "init_session_pool",
]
