"""
Test configuration for acquisition tests.
"""

import pytest

from edgefetch.acquisition.config import AcquisitionConfig
from edgefetch.acquisition.orchestrator import ModelAcquirer
from edgefetch.acquisition.registry import ModelRegistry

from fakes import HUB, FakeSession


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def config(tmp_path):
    return AcquisitionConfig(cache_root=tmp_path / "cache", hub_url=HUB)


@pytest.fixture
def acquirer(config, fake_session):
    return ModelAcquirer(config, session=fake_session, registry=ModelRegistry([]))
