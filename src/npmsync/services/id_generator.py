"""Prefixed identifiers for rows and traces."""

import uuid

ID_HEX_LENGTH = 16


def generate_id(prefix: str) -> str:
    """``prefix`` plus 16 random hex characters, e.g. ``ntf_9f2c41d07ab85e36``."""
    return prefix + uuid.uuid4().hex[:ID_HEX_LENGTH]
