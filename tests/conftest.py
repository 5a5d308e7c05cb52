"""Shared fixtures."""

import pytest

from statecraft.task.context import TaskContext
from statecraft.variables.renderer import RendererCache

from tests.fakes import FakeProvider


@pytest.fixture
def renderer_cache():
    return RendererCache()


@pytest.fixture
def renderer(renderer_cache):
    return renderer_cache.get()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def make_ctx(provider, renderer):
    """Build a TaskContext bound to the fake provider."""
    def _make(variables=None, task_name="test", **kwargs):
        return TaskContext(
            provider=kwargs.pop("provider", provider),
            renderer=renderer,
            variables=variables,
            task_name=task_name,
            **kwargs
        )
    return _make
