"""
Basic authentication against the credential directory.
"""

from __future__ import annotations

import base64
import binascii
import hmac

from oc.exceptions import AuthenticationError
from oc.stores.base import CredentialDirectory


def parse_basic_authorization(header: str | None) -> tuple[str, str]:
    """Decode an ``Authorization: Basic ...`` header into (username, password).

    The password is everything after the first colon, so passwords may
    contain colons.

    Raises:
        AuthenticationError: If the header is missing or malformed.
    """
    if not header or not header.startswith("Basic "):
        raise AuthenticationError("Missing Basic credentials")

    encoded = header[len("Basic "):].strip()
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise AuthenticationError("Malformed Basic credentials") from e

    username, sep, password = decoded.partition(":")
    if not sep:
        raise AuthenticationError("Malformed Basic credentials")
    return username, password


async def authenticate(header: str | None, credentials: CredentialDirectory) -> str:
    """Check request credentials.

    Returns:
        The authenticated username.

    Raises:
        AuthenticationError: If the credentials are missing or wrong.
    """
    username, password = parse_basic_authorization(header)
    expected = await credentials.lookup_password(username)
    if expected is None or not hmac.compare_digest(
        expected.encode("utf-8"), password.encode("utf-8")
    ):
        raise AuthenticationError("Invalid credentials", context={"username": username})
    return username
