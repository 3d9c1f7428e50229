"""
Change fingerprint for rendered captions.

SHA-1 is used for equality only, never for security.  It matches the
digest already stored in ``photos_messages.message_hash`` by earlier
deployments, so switching versions does not re-edit every message.
"""

from __future__ import annotations

import hashlib


def generate_message_hash(text: str) -> str:
    """Hex SHA-1 digest of the UTF-8 bytes of ``text``."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()
