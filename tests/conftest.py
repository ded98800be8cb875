"""Pytest configuration for moduletree tests."""

import pytest

from moduletree import ManualDefer
from moduletree import make_installer


@pytest.fixture
def defer():
    """Host-driven defer primitive; tests advance turns explicitly."""
    return ManualDefer()


@pytest.fixture
def installer(defer):
    return make_installer(defer=defer)


@pytest.fixture
def install(installer):
    return installer.install


def exporting(**values):
    """Factory that copies ``values`` into its exports."""

    def factory(require, exports, module):
        exports.update(values)

    return factory
