"""Provider configuration resolution."""

from typing import Optional

from imagestudio.core.config import Settings
from imagestudio.services.exceptions import ProviderConfigError
from imagestudio.services.providers.types import ProviderConfig


class ProviderConfigResolver:
    """Looks up provider entries from application settings."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def resolve(self, provider_id: str) -> ProviderConfig:
        """Return the enabled provider entry for `provider_id`.

        Raises:
            ProviderConfigError: If the provider is unknown or disabled
        """
        provider = next((p for p in self.settings.providers if p.id == provider_id), None)
        if provider is None:
            raise ProviderConfigError(f"Unknown provider: {provider_id}")
        if not provider.enabled:
            raise ProviderConfigError(f"Provider disabled: {provider.name}")
        return provider


def select_api_key(request_key: Optional[str], stored_key: Optional[str]) -> str:
    """Prefer a request-scoped key; an empty one never hides the stored key."""
    from_request = request_key.strip() if isinstance(request_key, str) else ""
    from_config = (stored_key or "").strip()
    return from_request or from_config
