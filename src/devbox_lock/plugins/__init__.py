"""Remote plugin sources."""

import httpx

from devbox_lock.core.cache import RemoteContentCache
from devbox_lock.parsers.flake import parse_ref
from devbox_lock.plugins.github import GithubPlugin, canonical_name
from devbox_lock.plugins.redact import redact_auth_header


async def get_plugin(
    ref: str, cache: RemoteContentCache, client: httpx.AsyncClient | None = None
) -> GithubPlugin:
    """Factory function to create a plugin source from a reference string."""
    parsed = parse_ref(ref)
    match parsed.type:
        case "github":
            return await GithubPlugin.create(parsed, cache, client=client)
        case _:
            raise ValueError(f"Unsupported plugin reference: {ref!r}. Use 'github:owner/repo?dir=...'.")


__all__ = ["GithubPlugin", "canonical_name", "get_plugin", "redact_auth_header"]
