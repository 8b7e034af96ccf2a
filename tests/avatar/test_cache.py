"""Tests for the directory-backed avatar cache."""

from __future__ import annotations

import json
import os
import threading
import time
from datetime import timedelta
from pathlib import Path

import pytest

from termonaut.avatar.cache import STRAY_MIN_AGE, AvatarCache, SweepTask
from termonaut.avatar.errors import CacheExpiredError, CacheIOError, CacheNotFoundError
from termonaut.avatar.models import SIZE_SMALL, Avatar, utcnow


def _avatar(fingerprint: str, **overrides) -> Avatar:
    fields = dict(
        username="alice",
        level=7,
        style="pixel-art",
        size=SIZE_SMALL,
        svg_data=b"<svg>" + b"x" * 200 + b"</svg>",
        ascii_art="@" * 100,
        seed="alice:7:1",
        fingerprint=fingerprint,
    )
    fields.update(overrides)
    return Avatar(**fields)


def _put(cache: AvatarCache, fingerprint: str, **overrides) -> Avatar:
    avatar = _avatar(fingerprint, **overrides)
    cache.set(fingerprint, avatar)
    return avatar


def _edit_meta(cache: AvatarCache, fingerprint: str, **fields) -> None:
    path = cache.meta_path(fingerprint)
    data = json.loads(path.read_text())
    data.update(fields)
    path.write_text(json.dumps(data))


def _files(cache: AvatarCache, fingerprint: str) -> list[Path]:
    return [cache.meta_path(fingerprint), cache.svg_path(fingerprint), cache.ascii_path(fingerprint)]


def _wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ---------------------------------------------------------------------------
# Layout and basic operations
# ---------------------------------------------------------------------------


class TestLayout:
    def test_creates_directories(self, cache):
        assert cache.meta_dir.is_dir()
        assert cache.svg_dir.is_dir()
        assert cache.ascii_dir.is_dir()

    def test_set_writes_three_files(self, cache):
        _put(cache, "fp1")
        assert all(path.exists() for path in _files(cache, "fp1"))
        meta = json.loads(cache.meta_path("fp1").read_text())
        assert meta["access_count"] == 1
        assert meta["avatar"]["fingerprint"] == "fp1"

    def test_no_staging_files_left_behind(self, cache):
        _put(cache, "fp1")
        _put(cache, "fp1")
        leftovers = [p for p in cache.cache_dir.rglob("*") if p.name.endswith(".tmp")]
        assert leftovers == []

    @pytest.mark.parametrize("key", ["", "../escape", "a/b", "with space", "abc\n", "fp1\n"])
    def test_rejects_unsafe_keys(self, cache, key):
        with pytest.raises(CacheIOError):
            cache.meta_path(key)


class TestGet:
    def test_round_trip(self, cache):
        stored = _put(cache, "fp1")
        loaded = cache.get("fp1")
        assert loaded.svg_data == stored.svg_data
        assert loaded.ascii_art == stored.ascii_art
        assert loaded.style == "pixel-art"

    def test_missing_entry(self, cache):
        with pytest.raises(CacheNotFoundError):
            cache.get("nope")

    def test_records_access(self, cache):
        _put(cache, "fp1")
        cache.get("fp1")
        cache.get("fp1")
        entry = cache.get_entry("fp1")
        assert entry.access_count == 3
        assert entry.last_access >= entry.cached_at

    def test_access_does_not_extend_expiry(self, cache):
        _put(cache, "fp1")
        expires = cache.get_entry("fp1").expires_at
        cache.get("fp1")
        assert cache.get_entry("fp1").expires_at == expires

    def test_expired_entry_is_removed(self, cache):
        _put(cache, "fp1")
        _edit_meta(cache, "fp1", expires_at=(utcnow() - timedelta(seconds=1)).isoformat())
        with pytest.raises(CacheExpiredError):
            cache.get("fp1")
        assert not any(path.exists() for path in _files(cache, "fp1"))
        with pytest.raises(CacheNotFoundError):
            cache.get("fp1")

    def test_corrupt_metadata(self, cache):
        _put(cache, "fp1")
        cache.meta_path("fp1").write_text("{not json")
        with pytest.raises(CacheIOError):
            cache.get("fp1")

    def test_missing_artifact_uses_embedded_copy(self, cache):
        stored = _put(cache, "fp1")
        cache.ascii_path("fp1").unlink()
        assert cache.get("fp1").ascii_art == stored.ascii_art


class TestSet:
    def test_overwrite_resets_access(self, cache):
        _put(cache, "fp1")
        cache.get("fp1")
        _put(cache, "fp1", ascii_art="##")
        entry = cache.get_entry("fp1")
        assert entry.access_count == 1
        assert cache.get("fp1").ascii_art == "##"

    def test_empty_artifact_removes_stale_file(self, cache):
        _put(cache, "fp1")
        _put(cache, "fp1", ascii_art="")
        assert not cache.ascii_path("fp1").exists()

    def test_ttl_is_applied(self, tmp_path):
        cache = AvatarCache(tmp_path / "c", ttl=3600, sweep_on_start=False)
        entry = cache.set("fp1", _avatar("fp1"))
        assert entry.expires_at - entry.cached_at == timedelta(hours=1)

    def test_failed_write_commits_nothing(self, cache, monkeypatch):
        real_replace = os.replace

        def flaky_replace(src, dst):
            if str(dst).endswith(".json"):
                raise OSError("disk full")
            return real_replace(src, dst)

        monkeypatch.setattr(os, "replace", flaky_replace)
        with pytest.raises(CacheIOError):
            cache.set("fp1", _avatar("fp1"))
        assert not cache.meta_path("fp1").exists()
        assert not cache.svg_path("fp1").exists()
        assert not cache.ascii_path("fp1").exists()
        leftovers = [p for p in cache.cache_dir.rglob("*") if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_failed_overwrite_keeps_previous_entry(self, cache, monkeypatch):
        previous = _put(cache, "fp1")
        real_replace = os.replace

        def flaky_replace(src, dst):
            if str(dst).endswith(".json"):
                raise OSError("disk full")
            return real_replace(src, dst)

        monkeypatch.setattr(os, "replace", flaky_replace)
        with pytest.raises(CacheIOError):
            cache.set("fp1", _avatar("fp1", ascii_art="##", svg_data=b"<svg>new</svg>"))
        monkeypatch.undo()

        loaded = cache.get("fp1")
        assert loaded.ascii_art == previous.ascii_art
        assert loaded.svg_data == previous.svg_data


class TestDeleteAndClear:
    def test_delete_removes_all_files(self, cache):
        _put(cache, "fp1")
        cache.delete("fp1")
        assert not any(path.exists() for path in _files(cache, "fp1"))

    def test_delete_missing_is_fine(self, cache):
        cache.delete("never-there")

    def test_clear_then_set(self, cache):
        _put(cache, "fp1")
        cache.clear()
        assert not cache.cache_dir.exists()
        assert cache.keys() == []
        _put(cache, "fp2")
        assert cache.keys() == ["fp2"]


# ---------------------------------------------------------------------------
# Stats, size and eviction
# ---------------------------------------------------------------------------


class TestStats:
    def test_counts(self, cache):
        _put(cache, "fp1")
        _put(cache, "fp2")
        _put(cache, "fp3")
        cache.get("fp1")
        _edit_meta(cache, "fp3", expires_at=(utcnow() - timedelta(seconds=1)).isoformat())

        stats = cache.stats()
        assert stats.total_entries == 3
        assert stats.valid_entries == 2
        assert stats.expired_entries == 1
        assert stats.total_access_count == 4
        assert stats.hit_rate == pytest.approx(0.5)
        assert stats.total_size == cache.get_cache_size()

    def test_empty_cache(self, cache):
        stats = cache.stats()
        assert stats.total_entries == 0
        assert stats.hit_rate == 0.0


class TestEviction:
    def test_lru_order(self, cache):
        now = utcnow()
        for index, fp in enumerate(("fp1", "fp2", "fp3"), start=1):
            _put(cache, fp)
            _edit_meta(cache, fp, last_access=(now + timedelta(seconds=index)).isoformat())

        budget = cache.get_cache_size() - 1
        assert cache.evict_by_size(budget) == 1
        assert cache.keys() == ["fp2", "fp3"]
        assert cache.get_cache_size() <= budget

    def test_recent_access_protects_entry(self, cache):
        now = utcnow()
        for index, fp in enumerate(("fp1", "fp2", "fp3"), start=1):
            _put(cache, fp)
            _edit_meta(cache, fp, last_access=(now - timedelta(hours=4 - index)).isoformat())
        cache.get("fp1")

        cache.evict_by_size(cache.get_cache_size() - 1)
        assert "fp1" in cache.keys()
        assert "fp2" not in cache.keys()

    def test_zero_budget_empties_cache(self, cache):
        for fp in ("fp1", "fp2", "fp3"):
            _put(cache, fp)
        assert cache.evict_by_size(0) == 3
        assert cache.get_cache_size() == 0

    def test_under_budget_is_noop(self, cache):
        _put(cache, "fp1")
        assert cache.evict_by_size(10**9) == 0
        assert cache.keys() == ["fp1"]

    def test_unreadable_entries_go_first(self, cache):
        now = utcnow()
        _put(cache, "fp1")
        _edit_meta(cache, "fp1", last_access=(now - timedelta(days=1)).isoformat())
        _put(cache, "fp2")
        cache.meta_path("fp2").write_text("garbage")
        cache.evict_by_size(cache.get_cache_size() - 1)
        assert cache.keys() == ["fp1"]

    def test_zero_budget_removes_strays(self, cache):
        _put(cache, "fp1")
        (cache.svg_dir / ".fp2.svg.abc.tmp").write_bytes(b"x" * 500)
        (cache.svg_dir / "fp3.svg").write_bytes(b"x" * 500)
        assert cache.evict_by_size(0) == 1
        assert cache.get_cache_size() == 0

    def test_strays_go_before_entries(self, cache):
        _put(cache, "fp1")
        entry_bytes = cache.get_cache_size()
        (cache.ascii_dir / "orphan.txt").write_text("@" * 300)
        assert cache.evict_by_size(entry_bytes) == 0
        assert cache.keys() == ["fp1"]
        assert not (cache.ascii_dir / "orphan.txt").exists()


# ---------------------------------------------------------------------------
# Background sweeping
# ---------------------------------------------------------------------------


class TestSweep:
    def test_sweep_expired(self, cache):
        _put(cache, "fp1")
        _put(cache, "fp2")
        _edit_meta(cache, "fp1", expires_at=(utcnow() - timedelta(seconds=1)).isoformat())
        assert cache.sweep_expired() == 1
        assert cache.keys() == ["fp2"]

    def test_sweep_honours_stop(self, cache):
        _put(cache, "fp1")
        _edit_meta(cache, "fp1", expires_at=(utcnow() - timedelta(seconds=1)).isoformat())
        stop = threading.Event()
        stop.set()
        assert cache.sweep_expired(stop) == 0
        assert cache.keys() == ["fp1"]

    def test_sweep_removes_old_strays_only(self, cache):
        _put(cache, "fp1")
        old_tmp = cache.meta_dir / ".fp2.json.abc.tmp"
        old_orphan = cache.svg_dir / "fp3.svg"
        fresh_tmp = cache.ascii_dir / ".fp4.txt.def.tmp"
        for path in (old_tmp, old_orphan, fresh_tmp):
            path.write_bytes(b"x" * 100)
        stale = time.time() - STRAY_MIN_AGE - 60
        for path in (old_tmp, old_orphan):
            os.utime(path, (stale, stale))

        assert cache.sweep_expired() == 0
        assert not old_tmp.exists()
        assert not old_orphan.exists()
        assert fresh_tmp.exists()
        assert all(path.exists() for path in _files(cache, "fp1"))

    def test_remove_strays(self, cache):
        _put(cache, "fp1")
        (cache.svg_dir / "gone.svg").write_bytes(b"<svg/>")
        (cache.ascii_dir / "gone.txt").write_text("@@")
        assert cache.remove_strays() == 2
        assert cache.keys() == ["fp1"]
        assert cache.get_cache_size() == sum(path.stat().st_size for path in _files(cache, "fp1"))

    def test_sweeper_started_on_construction(self, tmp_path):
        seed = AvatarCache(tmp_path / "c", sweep_on_start=False)
        seed.set("old", _avatar("old"))
        _edit_meta(seed, "old", expires_at=(utcnow() - timedelta(seconds=1)).isoformat())
        seed.set("new", _avatar("new"))

        cache = AvatarCache(tmp_path / "c")
        assert cache.sweeper is not None
        assert cache.sweeper.wait(5)
        assert cache.sweeper.removed == 1
        assert cache.keys() == ["new"]

    def test_no_sweeper_when_disabled(self, cache):
        assert cache.sweeper is None

    def test_schedule_sweeps_replaces_sweeper(self, cache):
        task = cache.schedule_sweeps(0.01)
        try:
            assert cache.sweeper is task
            assert _wait_until(lambda: task.runs >= 2)
        finally:
            task.cancel()
        assert task.wait(5)


class TestSweepTask:
    def test_one_shot(self):
        task = SweepTask(lambda stop: 2).start()
        assert task.wait(5)
        assert task.done
        assert task.removed == 2
        assert task.runs == 1

    def test_periodic_until_cancelled(self):
        task = SweepTask(lambda stop: 1, interval=0.01).start()
        assert _wait_until(lambda: task.runs >= 3)
        task.cancel()
        assert task.wait(5)
        assert task.cancelled
        assert task.removed == task.runs

    def test_cancel_reaches_sweep(self):
        started = threading.Event()

        def sweep(stop: threading.Event) -> int:
            started.set()
            stop.wait(5)
            return 0

        task = SweepTask(sweep).start()
        assert started.wait(5)
        task.cancel()
        assert task.wait(5)

    def test_failure_is_logged_not_raised(self, caplog):
        def sweep(stop):
            raise RuntimeError("boom")

        task = SweepTask(sweep).start()
        assert task.wait(5)
        assert task.runs == 1
        assert "sweep failed" in caplog.text

    def test_restart(self):
        task = SweepTask(lambda stop: 1).start()
        task.wait(5)
        task.start()
        task.wait(5)
        assert task.runs == 2
