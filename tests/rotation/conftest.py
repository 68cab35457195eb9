"""Fixtures for rotation tests."""

import pytest

from credrotate.rotation import (BatchOrchestrator, PlatformCredentialStore,
                                 StaticAccountDirectory, StaticSecretProvider)

from .fakes import (TEST_SECRET, FakeDirectoryWriter, FakePlatformClient,
                    RecordingPropagation, accounts)


@pytest.fixture
def platform():
    return FakePlatformClient()

@pytest.fixture
def writer():
    return FakeDirectoryWriter()

@pytest.fixture
def store(platform, writer):
    return PlatformCredentialStore(platform, writer)

@pytest.fixture
def propagation():
    return RecordingPropagation()

@pytest.fixture
def make_orchestrator(store, propagation):
    """Build an orchestrator over the given identifiers with shared fakes."""

    def _make(*identifiers, **kwargs):
        kwargs.setdefault("store", store)
        kwargs.setdefault("propagation", propagation)
        kwargs.setdefault("secret_provider", StaticSecretProvider(TEST_SECRET))
        return BatchOrchestrator(directory=StaticAccountDirectory(accounts(*identifiers)), **kwargs)

    return _make
