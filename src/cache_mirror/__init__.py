# SPDX-License-Identifier: MIT
"""Cache Mirror - Keep a local cache eventually consistent with an origin platform."""

from importlib.metadata import PackageNotFoundError, version


__all__: list[str] = ["__version__"]

# Get version from installed package metadata
__version__: str
try:
    __version__ = version("cache-mirror")
except PackageNotFoundError:
    # Package is not installed, use development fallback
    __version__ = "development"
