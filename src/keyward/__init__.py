"""keyward: an OAuth 2.1 authorization server that wraps an upstream API key."""

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _get_version

try:
    __version__ = _get_version("keyward")
except PackageNotFoundError:
    __version__ = "0.0.0"
