"""Mark everything collected under tests/unit as a unit test."""

from pathlib import Path

import pytest


UNIT_DIR = Path(__file__).parent


def pytest_collection_modifyitems(config, items):
    for item in items:
        if UNIT_DIR in Path(item.fspath).parents:
            item.add_marker(pytest.mark.unit)
