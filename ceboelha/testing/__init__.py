"""Testing utilities for Ceboelha applications.

Usage in conftest.py:
    pytest_plugins = ["ceboelha.testing.fixtures"]

Or build components directly:
    from ceboelha.testing import InMemoryS3, FrozenClock, create_test_settings
"""

from ceboelha.testing.mocks import InMemoryS3
from ceboelha.testing.utils import FrozenClock, create_test_settings

__all__ = [
    "InMemoryS3",
    "FrozenClock",
    "create_test_settings",
]
