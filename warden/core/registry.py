"""Registry for authorization providers.

The host queries authorization capabilities by name (e.g. ``"rbac"``) and
asks for the active provider without knowing which implementation it is.
"""

from typing import Dict, List, Optional

from warden.common.logger import get_logger
from warden.core.rbac.provider import AuthorizationProvider

logger = get_logger("provider_registry")


class ProviderRegistry:
    """Registry for authorization providers.

    Maps provider names to instances and tracks the active one.
    """

    _instance: Optional["ProviderRegistry"] = None
    _providers: Dict[str, AuthorizationProvider]
    _active: Optional[str]

    def __new__(cls) -> "ProviderRegistry":
        """Singleton pattern for global registry."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._providers = {}
            cls._instance._active = None
        return cls._instance

    def register(self, provider: AuthorizationProvider, name: Optional[str] = None) -> None:
        """Register a provider under ``name`` (defaults to its provider_name).

        Args:
            provider: AuthorizationProvider instance to register
            name: Lookup name
        """
        name = name or provider.provider_name
        if name in self._providers:
            logger.warning(f"Overwriting existing provider: {name}")
        self._providers[name] = provider
        logger.debug(f"Registered authorization provider: {name}")

    def unregister(self, name: str) -> None:
        """Unregister a provider; clears the active slot if it was active."""
        if name in self._providers:
            del self._providers[name]
            if self._active == name:
                self._active = None
            logger.debug(f"Unregistered authorization provider: {name}")

    def get(self, name: str) -> Optional[AuthorizationProvider]:
        """Get provider by name, None if not registered."""
        return self._providers.get(name)

    def set_active(self, name: str) -> None:
        """Make a registered provider the active one.

        Raises:
            KeyError: if no provider is registered under ``name``
        """
        if name not in self._providers:
            raise KeyError(f"No authorization provider registered as {name}")
        self._active = name
        logger.info(f"Active authorization provider: {name}")

    def get_active(self) -> Optional[AuthorizationProvider]:
        """Get the active provider, None if none was activated."""
        if self._active is None:
            return None
        return self._providers.get(self._active)

    def list_providers(self) -> List[str]:
        """List all registered provider names."""
        return list(self._providers.keys())

    def clear(self) -> None:
        """Clear all registered providers (mainly for testing)."""
        self._providers.clear()
        self._active = None


# Global registry instance
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
