"""
Tests for store configuration and environment overrides.
"""
from pathlib import Path

import pytest
from pydantic import ValidationError

from tinysecrets import FormatError, KdfParams, StoreConfig
from tinysecrets.vault.config import default_store_path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "TINYSECRETS_STORE",
        "TINYSECRETS_HOME",
        "TINYSECRETS_KDF_TIME_COST",
        "TINYSECRETS_KDF_MEMORY_COST",
        "TINYSECRETS_KDF_PARALLELISM",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaultPath:
    """Tests for store path resolution."""

    def test_home_default(self):
        assert default_store_path() == Path.home() / ".tinysecrets" / "store.db"

    def test_home_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TINYSECRETS_HOME", str(tmp_path))
        assert default_store_path() == tmp_path / "store.db"

    def test_explicit_store_wins(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TINYSECRETS_HOME", str(tmp_path / "home"))
        monkeypatch.setenv("TINYSECRETS_STORE", str(tmp_path / "custom.db"))
        assert default_store_path() == tmp_path / "custom.db"


class TestKdfParams:
    """Tests for Argon2id parameter validation and serialization."""

    def test_defaults(self):
        params = KdfParams()
        assert (params.time_cost, params.memory_cost, params.parallelism) == (3, 65536, 4)
        assert params.hash_len == 32

    def test_json_round_trip(self):
        params = KdfParams(time_cost=2, memory_cost=1024, parallelism=2)
        assert KdfParams.from_json(params.to_json()) == params

    def test_invalid_json_is_format_error(self):
        with pytest.raises(FormatError):
            KdfParams.from_json("{broken")
        with pytest.raises(FormatError):
            KdfParams.from_json('{"time_cost": 0}')

    def test_hash_len_fixed(self):
        with pytest.raises(ValidationError):
            KdfParams(hash_len=16)

    def test_bounds(self):
        with pytest.raises(ValidationError):
            KdfParams(time_cost=0)
        with pytest.raises(ValidationError):
            KdfParams(parallelism=0)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TINYSECRETS_KDF_TIME_COST", "5")
        monkeypatch.setenv("TINYSECRETS_KDF_MEMORY_COST", "2048")
        params = KdfParams.from_env()
        assert params.time_cost == 5
        assert params.memory_cost == 2048
        assert params.parallelism == 4

    def test_frozen(self):
        with pytest.raises(ValidationError):
            KdfParams().time_cost = 9


class TestStoreConfig:
    """Tests for StoreConfig."""

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TINYSECRETS_STORE", str(tmp_path / "s.db"))
        monkeypatch.setenv("TINYSECRETS_KDF_PARALLELISM", "1")
        config = StoreConfig.from_env()
        assert config.path == tmp_path / "s.db"
        assert config.kdf.parallelism == 1
        assert config.history_limit == 10

    def test_expands_user(self):
        config = StoreConfig(path="~/somewhere/store.db")
        assert config.path == Path.home() / "somewhere" / "store.db"

    def test_directory_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            StoreConfig(path=tmp_path)

    def test_history_limit_bounds(self):
        with pytest.raises(ValidationError):
            StoreConfig(history_limit=0)
