"""stackboot - dependency-ordered bring-up for multi-service stacks.

Plans services into dependency waves, waits for each wave to report ready,
and bootstraps the shared PostgreSQL store the services need.
"""

from stackboot.version import __version__

__all__ = ["__version__"]
