"""
Flake Reference Parser
======================

Parses and renders the string forms of Nix flake references and
installables:

- ``github:owner/repo[/ref-or-rev][?dir=...&ref=...&rev=...]``
- ``path:/some/dir`` or an absolute ``/some/dir``
- ``flake:nixpkgs[/ref-or-rev]`` or a bare indirect id such as ``nixpkgs``
- ``git+https://host/repo.git?ref=main``
- ``https://host/archive.tar.gz`` / ``tarball+...`` / ``file+...``

An installable is a flake reference plus an attribute path, written
``<ref>#<attr.path>``.

Only the query parameters Nix itself understands for each reference type
are accepted; anything else is rejected rather than silently dropped so
that a locked reference never loses part of its identity.
"""

import re
from dataclasses import dataclass, replace
from urllib.parse import quote, unquote

from devbox_lock.errors import FlakeRefError

REV_PATTERN = re.compile(r"^[0-9a-f]{40}$")

_INDIRECT_ID = re.compile(r"^[a-zA-Z][a-zA-Z0-9_\-]*$")

# Query parameters accepted per reference type, mapped to FlakeRef fields.
_QUERY_FIELDS = {
    "github": {
        "dir": "dir",
        "ref": "ref",
        "rev": "rev",
        "host": "host",
        "narHash": "nar_hash",
        "lastModified": "last_modified",
    },
    "indirect": {"dir": "dir", "ref": "ref", "rev": "rev"},
    "path": {"narHash": "nar_hash", "lastModified": "last_modified"},
    "git": {
        "dir": "dir",
        "ref": "ref",
        "rev": "rev",
        "narHash": "nar_hash",
        "lastModified": "last_modified",
    },
    "tarball": {"dir": "dir", "narHash": "nar_hash", "lastModified": "last_modified"},
    "file": {"narHash": "nar_hash", "lastModified": "last_modified"},
}


@dataclass(frozen=True)
class FlakeRef:
    """A structured pointer to a versioned source of package definitions."""

    type: str
    id: str = ""
    owner: str = ""
    repo: str = ""
    ref: str = ""
    rev: str = ""
    dir: str = ""
    path: str = ""
    url: str = ""
    host: str = ""
    nar_hash: str = ""
    last_modified: str = ""

    @property
    def is_locked(self) -> bool:
        """True when the reference pins an immutable revision or content hash."""
        return bool(self.rev or self.nar_hash)

    def unlocked(self) -> "FlakeRef":
        return replace(self, rev="", nar_hash="", last_modified="")

    def __str__(self) -> str:
        if self.type == "github":
            base = f"github:{self.owner}/{self.repo}"
            if self.rev or self.ref:
                base += "/" + (self.rev or self.ref)
            query = {
                "dir": self.dir,
                "host": self.host,
                "lastModified": self.last_modified,
                "narHash": self.nar_hash,
                # A rev occupies the path segment, so a ref must go in the query.
                "ref": self.ref if self.rev else "",
            }
        elif self.type == "indirect":
            base = f"flake:{self.id}"
            if self.rev or self.ref:
                base += "/" + (self.rev or self.ref)
            query = {"dir": self.dir, "ref": self.ref if self.rev else ""}
        elif self.type == "path":
            base = f"path:{self.path}"
            query = {"lastModified": self.last_modified, "narHash": self.nar_hash}
        elif self.type == "git":
            base = f"git+{self.url}"
            query = {
                "dir": self.dir,
                "lastModified": self.last_modified,
                "narHash": self.nar_hash,
                "ref": self.ref,
                "rev": self.rev,
            }
        else:
            base = self.url
            query = {
                "dir": self.dir,
                "lastModified": self.last_modified,
                "narHash": self.nar_hash,
            }
        return base + _encode_query(query)


@dataclass(frozen=True)
class Installable:
    """A flake reference plus the attribute path of one package within it."""

    ref: FlakeRef
    attr_path: str = ""

    def __str__(self) -> str:
        if not self.attr_path:
            return str(self.ref)
        return f"{self.ref}#{self.attr_path}"


def parse_ref(raw: str) -> FlakeRef:
    """
    Parse a flake reference string.

    Raises:
        FlakeRefError: If the string is not a supported flake reference.
    """
    if not raw or raw.strip() != raw:
        raise FlakeRefError(f"invalid flake reference {raw!r}")
    if "#" in raw:
        raise FlakeRefError(
            f"invalid flake reference {raw!r}",
            hint="An attribute path (#...) belongs to an installable, not a reference.",
        )

    body, _, query = raw.partition("?")

    if body.startswith("/"):
        return _with_query(FlakeRef(type="path", path=body), "path", query, raw)

    scheme, sep, rest = body.partition(":")
    if not sep:
        return _parse_indirect(body, query, raw)

    if scheme == "github":
        return _parse_github(rest, query, raw)
    if scheme == "path":
        if not rest:
            raise FlakeRefError(f"flake reference {raw!r} has an empty path")
        return _with_query(FlakeRef(type="path", path=rest), "path", query, raw)
    if scheme == "flake":
        return _parse_indirect(rest, query, raw)
    if scheme.startswith("git+"):
        if not rest.strip("/"):
            raise FlakeRefError(f"flake reference {raw!r} has an empty URL")
        return _with_query(FlakeRef(type="git", url=body[len("git+"):]), "git", query, raw)
    if scheme in ("http", "https") or scheme.startswith("tarball+"):
        if not rest.strip("/"):
            raise FlakeRefError(f"flake reference {raw!r} has an empty URL")
        return _with_query(FlakeRef(type="tarball", url=body), "tarball", query, raw)
    if scheme.startswith("file+"):
        return _with_query(FlakeRef(type="file", url=body), "file", query, raw)

    raise FlakeRefError(
        f"unsupported flake reference type {scheme!r} in {raw!r}",
        hint="Supported types are github:, path:, flake:, git+*, tarball+*, file+* and http(s) URLs.",
    )


def parse_installable(raw: str) -> Installable:
    """Parse ``<ref>[#<attr_path>]`` into an Installable."""
    ref_part, _, attr_path = raw.partition("#")
    if not ref_part:
        raise FlakeRefError(f"installable {raw!r} is missing a flake reference")
    return Installable(ref=parse_ref(ref_part), attr_path=attr_path)


def _parse_github(rest: str, query: str, raw: str) -> FlakeRef:
    segments = rest.split("/")
    if len(segments) < 2 or not segments[0] or not segments[1]:
        raise FlakeRefError(
            f"github flake reference {raw!r} must be github:owner/repo[/ref]",
        )
    ref_or_rev = "/".join(segments[2:])
    parsed = FlakeRef(type="github", owner=segments[0], repo=segments[1])
    if ref_or_rev:
        if REV_PATTERN.fullmatch(ref_or_rev):
            parsed = replace(parsed, rev=ref_or_rev)
        else:
            parsed = replace(parsed, ref=ref_or_rev)
    return _with_query(parsed, "github", query, raw)


def _parse_indirect(body: str, query: str, raw: str) -> FlakeRef:
    flake_id, _, ref_or_rev = body.partition("/")
    if not _INDIRECT_ID.fullmatch(flake_id):
        raise FlakeRefError(f"invalid indirect flake id in {raw!r}")
    parsed = FlakeRef(type="indirect", id=flake_id)
    if ref_or_rev:
        if REV_PATTERN.fullmatch(ref_or_rev):
            parsed = replace(parsed, rev=ref_or_rev)
        else:
            parsed = replace(parsed, ref=ref_or_rev)
    return _with_query(parsed, "indirect", query, raw)


def _with_query(parsed: FlakeRef, ref_type: str, query: str, raw: str) -> FlakeRef:
    if not query:
        return parsed
    allowed = _QUERY_FIELDS[ref_type]
    updates = {}
    for part in filter(None, query.split("&")):
        key, _, value = part.partition("=")
        key, value = unquote(key), unquote(value)
        if key not in allowed:
            raise FlakeRefError(
                f"unsupported parameter {key!r} in {ref_type} flake reference {raw!r}"
            )
        updates[allowed[key]] = value
    if "rev" in updates and updates["rev"] and not REV_PATTERN.fullmatch(updates["rev"]):
        raise FlakeRefError(f"invalid git revision {updates['rev']!r} in {raw!r}")
    return replace(parsed, **updates)


def _encode_query(params: dict[str, str]) -> str:
    pairs = [
        f"{key}={quote(value, safe='/:')}" for key, value in sorted(params.items()) if value
    ]
    if not pairs:
        return ""
    return "?" + "&".join(pairs)
