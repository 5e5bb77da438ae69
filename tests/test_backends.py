from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import fakeredis
import pytest
import redis

from updateflow.backends.file_backend import FileCacheBacking
from updateflow.backends.redis_backend import RedisCacheBacking
from updateflow.backends.sql_backend import SqlCacheBacking
from updateflow.cache import CacheLayer
from updateflow.errors import CacheBackingError
from updateflow.executor import StepExecutor
from updateflow.model import Step, StepStatus, WorkOutcome

from .conftest import Counter


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture(params=["file", "sql", "redis"])
def backing(request, tmp_path, fake_server):
    if request.param == "file":
        return FileCacheBacking(tmp_path / "cache")
    if request.param == "sql":
        return SqlCacheBacking("sqlite://")
    return RedisCacheBacking(client=fakeredis.FakeRedis(server=fake_server, decode_responses=True))


class TestBackingContract:
    def test_load_missing_returns_none(self, backing):
        assert backing.load("nope") is None

    def test_store_then_load(self, backing):
        backing.store("winget:outdated", {"packages": ["git", "7zip"]}, 1234.5)
        assert backing.load("winget:outdated") == ({"packages": ["git", "7zip"]}, 1234.5)

    def test_store_overwrites(self, backing):
        backing.store("k", "old", 1.0)
        backing.store("k", "new", 2.0)
        assert backing.load("k") == ("new", 2.0)

    def test_delete(self, backing):
        backing.store("k", 1, 1.0)
        backing.delete("k")
        assert backing.load("k") is None
        backing.delete("never-existed")

    def test_clear(self, backing):
        backing.store("a", 1, 1.0)
        backing.store("b", 2, 1.0)
        backing.clear()
        assert backing.load("a") is None
        assert backing.load("b") is None

    def test_layer_round_trip(self, backing):
        CacheLayer(backing, clock=lambda: 100.0).get_or_compute("k", 60, lambda: [1, 2])
        layer = CacheLayer(backing, clock=lambda: 120.0)
        lookup = layer.fetch("k", 60, lambda: "recomputed")
        assert lookup.value == [1, 2]
        assert lookup.source == "backing"

    def test_step_outcome_survives_a_new_layer(self, backing):
        work = lambda: WorkOutcome(data={"stdout": "3 upgradable"}, exit_code=0)  # noqa: E731
        first = StepExecutor(CacheLayer(backing)).run(Step(id="apt", work=work, cache_key="apt:list"), "r1")
        assert first.metadata["cache_source"] == "computed"

        again = StepExecutor(CacheLayer(backing)).run(Step(id="apt", work=Counter(), cache_key="apt:list"), "r2")
        assert again.status is StepStatus.SUCCESS
        assert again.metadata["cache_source"] == "backing"
        assert again.metadata["exit_code"] == 0
        assert again.metadata["output"] == {"stdout": "3 upgradable"}


class TestFileBacking:
    def test_unserializable_value_raises_backing_error(self, tmp_path):
        backing = FileCacheBacking(tmp_path)
        with pytest.raises(CacheBackingError):
            backing.store("k", object(), 1.0)
        assert list(tmp_path.glob("*.tmp")) == []

    def test_corrupt_file_raises_backing_error(self, tmp_path):
        backing = FileCacheBacking(tmp_path)
        backing.entry_path("k").write_text("{not json", encoding="utf-8")
        with pytest.raises(CacheBackingError):
            backing.load("k")

    def test_delete_errors_are_wrapped(self, tmp_path, monkeypatch, caplog):
        backing = FileCacheBacking(tmp_path)
        backing.store("k", 1, 1.0)

        def denied(self, missing_ok=False):
            raise PermissionError("access denied")

        monkeypatch.setattr(Path, "unlink", denied)
        with pytest.raises(CacheBackingError):
            backing.delete("k")

        layer = CacheLayer(backing)
        layer.invalidate("k")
        assert "cache backing delete failed" in caplog.text


class TestSqlBacking:
    def test_count(self):
        backing = SqlCacheBacking("sqlite://")
        backing.store("a", 1, 1.0)
        backing.store("a", 2, 2.0)
        backing.store("b", 3, 1.0)
        assert backing.count() == 2

    def test_file_database_persists(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cache.db'}"
        SqlCacheBacking(url).store("k", {"v": 1}, 5.0)
        assert SqlCacheBacking(url).load("k") == ({"v": 1}, 5.0)


class TestRedisBacking:
    def test_clear_only_touches_prefix(self, fake_server):
        client = fakeredis.FakeRedis(server=fake_server, decode_responses=True)
        client.set("other:key", "keep")
        backing = RedisCacheBacking(client=client, prefix="uf")
        backing.store("k", 1, 1.0)
        backing.clear()
        assert client.get("other:key") == "keep"
        assert backing.load("k") is None

    def test_wraps_redis_errors(self):
        client = MagicMock()
        client.hgetall.side_effect = redis.ConnectionError("down")
        backing = RedisCacheBacking(client=client)
        with pytest.raises(CacheBackingError):
            backing.load("k")
