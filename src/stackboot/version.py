"""Version information for stackboot."""

from importlib import metadata


def get_version() -> str:
    """Return the installed distribution version, or a development fallback."""
    try:
        return metadata.version("stackboot")
    except metadata.PackageNotFoundError:
        return "0.1.0-dev"


__version__ = get_version()
