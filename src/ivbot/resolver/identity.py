from __future__ import annotations

import hashlib
import logging

log = logging.getLogger(__name__)

KEY_DIGEST_SIZE = 10  # bytes; hex-encoded to 20 characters


def derive_key(user_id: int | str | None, host: str) -> str | None:
    """Anonymized preference key for a (user, host) pair.

    BLAKE2s with a 10-byte digest over ``f"{user_id}{host}"``, rendered as
    upper-case hex. Unkeyed and unsalted so keys survive restarts.
    Returns None when there is no user to derive from.
    """
    if user_id is None or user_id == "":
        return None
    try:
        hasher = hashlib.blake2s(digest_size=KEY_DIGEST_SIZE)
    except ValueError:
        log.warning("Unable to construct BLAKE2s hasher", exc_info=True)
        return None
    hasher.update(f"{user_id}{host}".encode("utf-8"))
    return hasher.hexdigest().upper()
