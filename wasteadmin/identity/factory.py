from functools import lru_cache

from ..config import settings
from .local_provider import LocalIdentityProvider
from .provider import IdentityProvider


@lru_cache(maxsize=1)
def _build_provider(name: str) -> IdentityProvider:
    if name == "local":
        return LocalIdentityProvider()
    raise RuntimeError(f"Unknown identity provider: {name!r}")


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency; override in tests with ``app.dependency_overrides``."""
    return _build_provider(settings.identity_provider)
