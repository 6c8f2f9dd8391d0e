# Exception hierarchy shared across keyward.
# Created: 2026-10-19

from __future__ import annotations


class KeywardError(Exception):
    """Base class for keyward errors."""


class ConfigurationError(KeywardError):
    """Required key material or settings are missing."""


class KeyFormatError(ConfigurationError):
    """Configured key material has the wrong length or encoding."""
