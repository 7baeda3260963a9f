"""
GitHub Plugin Source — fetches plugin files from raw.githubusercontent.com.

A plugin is referenced by a ``github:`` flake reference. Its files are
fetched over HTTPS and cached in a ``RemoteContentCache`` for 24 hours by
default; set ``DEVBOX_X_GITHUB_PLUGIN_CACHE_TTL`` (e.g. ``1h``, ``30s``) to
override. Prefer a small value over ``0`` to disable caching, so repeated
reads within one command still hit the network only once.

Private repositories are supported through ``GITHUB_TOKEN``.
"""

import logging
import re
from datetime import timedelta
from urllib.parse import quote

import httpx

from devbox_lock.config import github_token, plugin_cache_ttl, plugin_cache_ttl_override
from devbox_lock.core.cache import RemoteContentCache
from devbox_lock.core.cachehash import bytes_hash
from devbox_lock.errors import PluginFetchError
from devbox_lock.parsers.flake import FlakeRef
from devbox_lock.plugins.manifest import (
    PLUGIN_CONFIG_NAME,
    plugin_name_from_content,
    purify_plugin_content,
)
from devbox_lock.plugins.redact import redact_auth_header

logger = logging.getLogger(__name__)

GITHUB_RAW_URL = "https://raw.githubusercontent.com"

# GitHub redirects master to main for repositories that renamed their
# default branch, but never the reverse.
DEFAULT_BRANCH = "master"

# GitHub only allows these characters in owner and repo names.
_NAME_DISALLOWED = re.compile(r"[^a-zA-Z0-9\-_.]+")


def canonical_name(owner: str, repo: str, name: str) -> str:
    """
    Stable display name for a plugin: ``owner.repo.name``.

    Empty components are dropped and every run of disallowed characters
    becomes a single space.
    """
    return _NAME_DISALLOWED.sub(" ", ".".join(part for part in (owner, repo, name) if part))


class GithubPlugin:
    """A plugin hosted in a GitHub repository."""

    def __init__(
        self,
        ref: FlakeRef,
        cache: RemoteContentCache,
        client: httpx.AsyncClient | None = None,
        token: str | None = None,
        name: str = "",
    ):
        if ref.type != "github":
            raise ValueError(f"not a github plugin reference: {ref}")
        self.ref = ref
        self.cache = cache
        self.client = client
        self.token = token or github_token()
        self.name = name or canonical_name(ref.owner, ref.repo, ref.dir.replace("/", "-"))

    @classmethod
    async def create(
        cls,
        ref: FlakeRef,
        cache: RemoteContentCache,
        client: httpx.AsyncClient | None = None,
        token: str | None = None,
    ) -> "GithubPlugin":
        """
        Build a plugin and derive its canonical name from ``plugin.json``.

        Older plugins do not declare a name; the plugin directory is used
        instead.
        """
        plugin = cls(ref, cache, client=client, token=token)
        declared = plugin_name_from_content(await plugin.file_content(PLUGIN_CONFIG_NAME))
        plugin.name = canonical_name(ref.owner, ref.repo, declared or ref.dir.replace("/", "-"))
        return plugin

    @property
    def canonical_name(self) -> str:
        return self.name

    def hash(self) -> str:
        """Identifies the referenced plugin version, not its content."""
        return bytes_hash(str(self.ref).encode("utf-8"))

    def lockfile_key(self) -> str:
        return str(self.ref)

    async def fetch(self) -> bytes:
        """The plugin manifest as plain JSON."""
        return purify_plugin_content(await self.file_content(PLUGIN_CONFIG_NAME))

    async def file_content(self, subpath: str) -> bytes:
        """
        Fetch a file from the plugin directory, through the cache.

        Raises:
            InvalidDurationError: If the TTL override is malformed. Raised
                before the cache or network is touched.
            PluginFetchError: If GitHub answers with a non-2xx status.
        """
        content_url = self.url(subpath)
        ttl_override = plugin_cache_ttl_override()
        ttl = plugin_cache_ttl(ttl_override)

        async def download() -> tuple[bytes, timedelta]:
            request = self.request(content_url)
            response = await self._send(request)
            if not response.is_success:
                raise PluginFetchError(self._failure_message(request, response))
            logger.debug(f"[Plugin] Fetched {content_url} ({len(response.content)} bytes)")
            return response.content, ttl

        # The override is part of the key so a short debug TTL never
        # reuses an entry stored under a longer one.
        return await self.cache.get_or_set(content_url + ttl_override, download)

    def url(self, subpath: str) -> str:
        segments = [
            self.ref.owner,
            self.ref.repo,
            self.ref.rev or self.ref.ref or DEFAULT_BRANCH,
            self.ref.dir,
            subpath,
        ]
        path = "/".join(seg.strip("/") for seg in segments if seg.strip("/"))
        return f"{GITHUB_RAW_URL}/{quote(path, safe='/')}"

    def request(self, content_url: str) -> httpx.Request:
        headers = {}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
            logger.debug(
                "GITHUB_TOKEN found, adding auth header "
                f"{redact_auth_header(headers['Authorization'])}"
            )
        return httpx.Request("GET", content_url, headers=headers)

    async def _send(self, request: httpx.Request) -> httpx.Response:
        if self.client is not None:
            return await self.client.send(request)
        timeout = httpx.Timeout(30.0, connect=60.0)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            return await client.send(request)

    def _failure_message(self, request: httpx.Request, response: httpx.Response) -> str:
        auth_header = request.headers.get("Authorization", "")
        if auth_header:
            auth_info = (
                f"The auth header `{redact_auth_header(auth_header)}` was sent with this request."
            )
        else:
            auth_info = "No auth header was sent with this request."
        return (
            f"failed to get plugin {self.lockfile_key()} @ {request.url} "
            f"(Status code {response.status_code}).\n{auth_info}\n"
            f"Please make sure a {PLUGIN_CONFIG_NAME} file exists in plugin directory."
        )
