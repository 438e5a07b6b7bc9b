"""In-memory fakes for the stackboot ports and the clock."""

from tests.fakes.clock import FakeClock
from tests.fakes.config import REQUIRED_VALUES, make_config
from tests.fakes.datastore import CatalogState, FakeDataStore, Role, Slot
from tests.fakes.runtime import FakeRuntime

__all__ = [
    "REQUIRED_VALUES",
    "CatalogState",
    "FakeClock",
    "FakeDataStore",
    "FakeRuntime",
    "Role",
    "Slot",
    "make_config",
]
