"""Typed wrapper for ID generation."""

import secrets
import string

from coolname import generate_slug  # type: ignore[import-untyped]


def generate_run_id() -> str:
    """Generate a unique slug-style run identifier with a random suffix.

    @return: A hyphenated slug string with a 6-character random suffix
            (e.g., "purple-elephant-a1b2c3")
    """
    random_suffix = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(6))
    return f"{generate_slug(2)}-{random_suffix}"
