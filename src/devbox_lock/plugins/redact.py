"""Redaction of credentials for diagnostics and logs."""

REVEALED_TOKEN_CHARS = 4
_MIN_REVEAL_LENGTH = 10


def redact_auth_header(value: str) -> str:
    """
    Mask an ``Authorization`` header value.

    The scheme (``token``, ``Bearer``) is kept. At most the first four
    characters of the credential are shown, which is usually just the
    ``ghp_`` prefix and enough to tell token types apart.

    >>> redact_auth_header("token ghp_1234567890abcd")
    'token ghp_**************'
    """
    parts = value.split(" ", 1)
    if len(value) < _MIN_REVEAL_LENGTH or len(parts) < 2:
        return "*" * len(value)

    scheme, token = parts
    if len(token) < _MIN_REVEAL_LENGTH:
        return f"{scheme} " + "*" * len(token)

    return f"{scheme} {token[:REVEALED_TOKEN_CHARS]}" + "*" * (len(token) - REVEALED_TOKEN_CHARS)
