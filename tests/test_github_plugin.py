"""Tests for the GitHub plugin source (HTTP mocked with httpx.MockTransport)."""

import json
from datetime import timedelta

import httpx
import pytest

from devbox_lock.config import ENV_GITHUB_TOKEN, ENV_PLUGIN_CACHE_TTL
from devbox_lock.core.cache import RemoteContentCache
from devbox_lock.errors import InvalidDurationError, PluginFetchError
from devbox_lock.parsers.flake import parse_ref
from devbox_lock.plugins import GithubPlugin, canonical_name, get_plugin

RAW = "https://raw.githubusercontent.com"
MONGO_URL = f"{RAW}/jetify-com/devbox-plugins/master/mongodb/plugin.json"
TOKEN = "ghp_1234567890abcdefghij"

MANIFEST = b"""{
  // MongoDB plugin
  "name": "mongodb",
  "version": "0.0.1",
  "readme": "See https://www.mongodb.com/docs/",
  /* services */
  "packages": ["mongodb@latest",],
}
"""


class FakeGithub:
    """MockTransport handler serving fixed files and recording requests."""

    def __init__(self, files=None):
        self.files = files if files is not None else {MONGO_URL: MANIFEST}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self.files.get(str(request.url))
        if body is None:
            return httpx.Response(404, content=b"404: Not Found")
        return httpx.Response(200, content=body)

    @property
    def calls(self) -> int:
        return len(self.requests)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv(ENV_GITHUB_TOKEN, raising=False)
    monkeypatch.delenv(ENV_PLUGIN_CACHE_TTL, raising=False)


@pytest.fixture
def github():
    return FakeGithub()


@pytest.fixture
def client(github):
    return httpx.AsyncClient(transport=httpx.MockTransport(github))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(tmp_path, clock):
    return RemoteContentCache("devbox/plugin/github", cache_dir=tmp_path, clock=clock)


def plugin_for(ref, cache, client, **kwargs):
    return GithubPlugin(parse_ref(ref), cache, client=client, **kwargs)


# ═══════════════════════════════════════════
# Naming and Identity
# ═══════════════════════════════════════════


class TestCanonicalName:
    def test_joins_with_dots(self):
        assert canonical_name("jetify-com", "devbox-plugins", "mongodb") == (
            "jetify-com.devbox-plugins.mongodb"
        )

    def test_skips_empty_components(self):
        assert canonical_name("owner", "repo", "") == "owner.repo"

    def test_disallowed_runs_become_one_space(self):
        assert canonical_name("my org", "re@@po", "a!b") == "my org.re po.a b"


class TestIdentity:
    def test_requires_github_ref(self, cache, client):
        with pytest.raises(ValueError):
            GithubPlugin(parse_ref("path:/tmp/plugin"), cache, client=client)

    def test_lockfile_key_is_ref_string(self, cache, client):
        plugin = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        assert plugin.lockfile_key() == "github:jetify-com/devbox-plugins?dir=mongodb"

    def test_hash_depends_only_on_ref(self, cache, client, github):
        first = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        second = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        other = plugin_for("github:jetify-com/devbox-plugins/v2?dir=mongodb", cache, client)
        assert first.hash() == second.hash()
        assert first.hash() != other.hash()
        assert len(first.hash()) == 64
        assert github.calls == 0

    def test_default_name_from_dir(self, cache, client):
        plugin = plugin_for("github:owner/repo?dir=plugins/mongo", cache, client)
        assert plugin.canonical_name == "owner.repo.plugins-mongo"


# ═══════════════════════════════════════════
# URLs and Headers
# ═══════════════════════════════════════════


class TestRequest:
    def test_url_defaults_to_master(self, cache, client):
        plugin = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        assert plugin.url("plugin.json") == MONGO_URL

    def test_url_uses_ref(self, cache, client):
        plugin = plugin_for("github:owner/repo/v1.2?dir=sub", cache, client)
        assert plugin.url("plugin.json") == f"{RAW}/owner/repo/v1.2/sub/plugin.json"

    def test_url_prefers_rev(self, cache, client):
        rev = "a" * 40
        plugin = plugin_for(f"github:owner/repo/{rev}?ref=main", cache, client)
        assert plugin.url("plugin.json") == f"{RAW}/owner/repo/{rev}/plugin.json"

    def test_url_without_dir(self, cache, client):
        plugin = plugin_for("github:owner/repo", cache, client)
        assert plugin.url("config/init.sh") == f"{RAW}/owner/repo/master/config/init.sh"

    def test_no_auth_header_without_token(self, cache, client):
        plugin = plugin_for("github:owner/repo", cache, client)
        assert "Authorization" not in plugin.request(plugin.url("plugin.json")).headers

    def test_token_from_environment(self, cache, client, monkeypatch):
        monkeypatch.setenv(ENV_GITHUB_TOKEN, TOKEN)
        plugin = plugin_for("github:owner/repo", cache, client)
        request = plugin.request(plugin.url("plugin.json"))
        assert request.headers["Authorization"] == f"token {TOKEN}"


# ═══════════════════════════════════════════
# Fetching
# ═══════════════════════════════════════════


class TestFetch:
    @pytest.mark.asyncio
    async def test_fetch_returns_purified_manifest(self, cache, client):
        plugin = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        content = await plugin.fetch()
        assert json.loads(content) == {
            "name": "mongodb",
            "version": "0.0.1",
            "readme": "See https://www.mongodb.com/docs/",
            "packages": ["mongodb@latest"],
        }

    @pytest.mark.asyncio
    async def test_content_is_cached(self, cache, client, github):
        plugin = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        await plugin.file_content("plugin.json")
        await plugin.file_content("plugin.json")
        assert github.calls == 1

    @pytest.mark.asyncio
    async def test_default_ttl_is_24_hours(self, cache, client, clock):
        plugin = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        await plugin.file_content("plugin.json")
        entry = cache._entries[MONGO_URL]
        assert entry.expires_at == clock.now + timedelta(hours=24).total_seconds()

    @pytest.mark.asyncio
    async def test_ttl_override_is_part_of_cache_key(self, cache, client, github, clock, monkeypatch):
        plugin = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)

        monkeypatch.setenv(ENV_PLUGIN_CACHE_TTL, "1h")
        await plugin.file_content("plugin.json")
        await plugin.file_content("plugin.json")
        assert github.calls == 1
        assert cache._entries[MONGO_URL + "1h"].expires_at == clock.now + 3600

        monkeypatch.setenv(ENV_PLUGIN_CACHE_TTL, "30s")
        await plugin.file_content("plugin.json")
        assert github.calls == 2

    @pytest.mark.asyncio
    async def test_malformed_ttl_fails_before_any_request(self, cache, client, github, monkeypatch):
        monkeypatch.setenv(ENV_PLUGIN_CACHE_TTL, "not-a-duration")
        plugin = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        with pytest.raises(InvalidDurationError):
            await plugin.file_content("plugin.json")
        assert github.calls == 0
        assert not cache.root.exists()

    @pytest.mark.asyncio
    async def test_sends_auth_header(self, cache, client, github, monkeypatch):
        monkeypatch.setenv(ENV_GITHUB_TOKEN, TOKEN)
        plugin = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        await plugin.file_content("plugin.json")
        assert github.requests[0].headers["Authorization"] == f"token {TOKEN}"

    @pytest.mark.asyncio
    async def test_not_found_without_token(self, cache, client):
        plugin = plugin_for("github:owner/missing?dir=nope", cache, client)
        with pytest.raises(PluginFetchError) as exc_info:
            await plugin.file_content("plugin.json")
        message = str(exc_info.value)
        assert f"{RAW}/owner/missing/master/nope/plugin.json" in message
        assert "github:owner/missing?dir=nope" in message
        assert "Status code 404" in message
        assert "No auth header was sent" in message
        assert "plugin.json file exists" in message

    @pytest.mark.asyncio
    async def test_not_found_with_token_is_redacted(self, cache, client):
        plugin = plugin_for("github:owner/private", cache, client, token=TOKEN)
        with pytest.raises(PluginFetchError) as exc_info:
            await plugin.file_content("plugin.json")
        message = str(exc_info.value)
        assert TOKEN not in message
        assert "token ghp_" + "*" * (len(TOKEN) - 4) in message

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, cache, client, github):
        plugin = plugin_for("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        github.files = {}
        with pytest.raises(PluginFetchError):
            await plugin.file_content("plugin.json")
        github.files = {MONGO_URL: MANIFEST}
        assert await plugin.file_content("plugin.json") == MANIFEST
        assert github.calls == 2


# ═══════════════════════════════════════════
# Construction
# ═══════════════════════════════════════════


class TestCreate:
    @pytest.mark.asyncio
    async def test_name_from_manifest(self, cache, client):
        plugin = await GithubPlugin.create(
            parse_ref("github:jetify-com/devbox-plugins?dir=mongodb"), cache, client=client
        )
        assert plugin.canonical_name == "jetify-com.devbox-plugins.mongodb"

    @pytest.mark.asyncio
    async def test_name_falls_back_to_dir(self, cache):
        url = f"{RAW}/owner/repo/master/plugins/redis/plugin.json"
        github = FakeGithub({url: b'{"version": "1"}'})
        async with httpx.AsyncClient(transport=httpx.MockTransport(github)) as client:
            plugin = await GithubPlugin.create(
                parse_ref("github:owner/repo?dir=plugins/redis"), cache, client=client
            )
        assert plugin.canonical_name == "owner.repo.plugins-redis"

    @pytest.mark.asyncio
    async def test_create_then_fetch_uses_cache(self, cache, client, github):
        plugin = await get_plugin("github:jetify-com/devbox-plugins?dir=mongodb", cache, client)
        await plugin.fetch()
        assert github.calls == 1

    @pytest.mark.asyncio
    async def test_get_plugin_rejects_other_types(self, cache, client):
        with pytest.raises(ValueError):
            await get_plugin("path:/tmp/plugin", cache, client)
