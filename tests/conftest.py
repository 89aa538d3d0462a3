"""Shared fixtures: throwaway stores with cheap KDF parameters."""
import pytest

from tinysecrets import Store, StoreConfig

from tests.helpers import FAST_KDF, PASSPHRASE


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "tinysecrets" / "store.db"


@pytest.fixture
def config(store_path):
    return StoreConfig(path=store_path, kdf=FAST_KDF)


@pytest.fixture
def store(config):
    """A freshly initialized store, closed after the test."""
    s = Store.init(PASSPHRASE, config=config)
    yield s
    s.close()
