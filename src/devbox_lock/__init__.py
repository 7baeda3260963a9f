"""
devbox-lock - Dependency locking core for devbox projects.

Resolves package specs into reproducible install references, persists them
in ``devbox.lock`` and tracks whether the locked state is stale. Also fetches
remotely hosted plugin manifests through a TTL cache.
"""

__version__ = "1.0.0"


def __getattr__(name: str):
    """Lazy import for heavy dependencies."""
    if name == "LockFile":
        from devbox_lock.core.lockfile import LockFile

        return LockFile
    if name == "GithubPlugin":
        from devbox_lock.plugins.github import GithubPlugin

        return GithubPlugin
    if name == "RemoteContentCache":
        from devbox_lock.core.cache import RemoteContentCache

        return RemoteContentCache
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["LockFile", "GithubPlugin", "RemoteContentCache", "__version__"]
