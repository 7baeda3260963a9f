"""
Plugin Manifest Utilities.

Plugin manifests (``plugin.json``) are JSON with comments: authors may use
``//`` and ``/* */`` comments and trailing commas. They are normalized to
plain JSON before being handed to anything else.
"""

import json
import logging
import re
from typing import Any

from devbox_lock.errors import PluginManifestError

logger = logging.getLogger(__name__)

PLUGIN_CONFIG_NAME = "plugin.json"

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def _remove_comments(text: str) -> str:
    """
    Remove ``//`` and ``/* */`` comments outside of string literals.

    Comments are replaced by whitespace so error positions stay meaningful.
    """
    out = []
    i = 0
    in_string = False
    while i < len(text):
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < len(text):
                out.append(text[i + 1])
                i += 1
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
            out.append(ch)
        elif text.startswith("//", i):
            end = text.find("\n", i)
            end = len(text) if end == -1 else end
            out.append(" " * (end - i))
            i = end
            continue
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                raise PluginManifestError("Unterminated block comment in plugin manifest.")
            out.append(re.sub(r"[^\n]", " ", text[i : end + 2]))
            i = end + 2
            continue
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def _remove_trailing_commas(text: str) -> str:
    out = []
    last = 0
    in_string = False
    i = 0
    # Only strip commas outside strings; string literals are copied verbatim.
    while i < len(text):
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 1
            elif ch == '"':
                out.append(text[last : i + 1])
                last = i + 1
                in_string = False
        elif ch == '"':
            out.append(_TRAILING_COMMA.sub(r"\1", text[last:i]))
            last = i
            in_string = True
        i += 1
    if in_string:
        out.append(text[last:])
    else:
        out.append(_TRAILING_COMMA.sub(r"\1", text[last:]))
    return "".join(out)


def load_plugin_manifest(content: bytes) -> dict[str, Any]:
    """Parse a plugin manifest, tolerating comments and trailing commas."""
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as e:
        raise PluginManifestError("Plugin manifest is not valid UTF-8.") from e
    try:
        data = json.loads(_remove_trailing_commas(_remove_comments(text)))
    except json.JSONDecodeError as e:
        raise PluginManifestError(
            "Plugin manifest is not valid JSON.",
            context={"error": str(e)},
        ) from e
    if not isinstance(data, dict):
        raise PluginManifestError("Plugin manifest must be a JSON object.")
    return data


def purify_plugin_content(content: bytes) -> bytes:
    """Normalize a plugin manifest to plain, indented JSON."""
    return (json.dumps(load_plugin_manifest(content), indent=2) + "\n").encode("utf-8")


def plugin_name_from_content(content: bytes) -> str:
    """Declared ``name`` of a plugin, or ``""`` if the manifest has none."""
    name = load_plugin_manifest(content).get("name", "")
    if not isinstance(name, str):
        logger.warning(f"Ignoring non-string plugin name: {name!r}")
        return ""
    return name
