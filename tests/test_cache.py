"""Tests for the content-addressed render cache."""

import hashlib
import os
import threading
import time

import pytest

from pbrtapi.utils.cache import HIT, MISS, SHARED, RenderCache

SCENE = b'WorldBegin\nShape "sphere"\n'
FP = hashlib.sha256(SCENE).hexdigest()


@pytest.fixture
def cache(tmp_path):
    return RenderCache(tmp_path / "exr_cache", ".exr", max_age=3600)


def age(path, seconds):
    then = time.time() - seconds
    os.utime(path, (then, then))


class TestEntries:
    def test_fingerprint_is_sha256_of_bytes(self):
        assert RenderCache.fingerprint(SCENE) == FP
        assert RenderCache.fingerprint(SCENE + b"\n") != FP

    def test_store_and_lookup(self, cache):
        assert cache.lookup(FP) is None
        path = cache.store(FP, b"image")
        assert path.name == f"{FP}.exr"
        assert cache.contains(FP)
        assert cache.lookup(FP) == b"image"

    def test_store_leaves_no_temporary_files(self, cache):
        cache.store(FP, b"image")
        assert [p.name for p in cache.cache_dir.iterdir()] == [f"{FP}.exr"]

    @pytest.mark.parametrize("fingerprint", ["", "abc", "../" + "a" * 61, FP.upper(), FP + "0"])
    def test_invalid_fingerprint(self, cache, fingerprint):
        with pytest.raises(ValueError):
            cache.entry_path(fingerprint)

    def test_discard(self, cache):
        cache.store(FP, b"image")
        assert cache.discard(FP)
        assert not cache.contains(FP)
        assert not cache.discard(FP)

    def test_discard_skips_entries_being_written(self, cache):
        cache.store(FP, b"image")
        cache._writing.add(FP)
        assert not cache.discard(FP)
        assert cache.contains(FP)


class TestGetOrRender:
    def test_miss_then_hit(self, cache):
        calls = []

        def render():
            calls.append(1)
            return b"image"

        first = cache.get_or_render(FP, render)
        second = cache.get_or_render(FP, render)

        assert (first.status, first.data, first.hit) == (MISS, b"image", False)
        assert (second.status, second.data, second.hit) == (HIT, b"image", True)
        assert len(calls) == 1

    def test_concurrent_requests_render_once(self, cache):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def render():
            calls.append(1)
            started.set()
            release.wait(5)
            return b"image"

        results = []

        def request():
            results.append(cache.get_or_render(FP, render))

        owner = threading.Thread(target=request)
        owner.start()
        assert started.wait(5)
        waiters = [threading.Thread(target=request) for _ in range(4)]
        for t in waiters:
            t.start()
        time.sleep(0.1)
        release.set()
        for t in [owner] + waiters:
            t.join(5)

        assert len(calls) == 1
        assert len(results) == 5
        assert all(r.data == b"image" for r in results)
        assert [r.status for r in results].count(MISS) == 1
        assert {r.status for r in results} <= {MISS, SHARED, HIT}
        assert cache.stats()["in_flight"] == 0

    def test_failure_reaches_every_waiter_and_stores_nothing(self, cache):
        started = threading.Event()
        release = threading.Event()
        errors = []

        def render():
            started.set()
            release.wait(5)
            raise RuntimeError("renderer crashed")

        def request():
            try:
                cache.get_or_render(FP, render)
            except RuntimeError as e:
                errors.append(str(e))

        owner = threading.Thread(target=request)
        owner.start()
        assert started.wait(5)
        waiter = threading.Thread(target=request)
        waiter.start()
        time.sleep(0.1)
        release.set()
        owner.join(5)
        waiter.join(5)

        assert errors[0] == "renderer crashed"
        assert not cache.contains(FP)
        assert cache._in_flight == {}

    def test_retry_after_failure(self, cache):
        def broken():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            cache.get_or_render(FP, broken)
        result = cache.get_or_render(FP, lambda: b"image")
        assert result.status == MISS


class TestSweep:
    def test_removes_only_old_entries(self, cache):
        old_fp = hashlib.sha256(b"old").hexdigest()
        age(cache.store(old_fp, b"old"), 7200)
        cache.store(FP, b"new")

        assert cache.sweep() == 1
        assert not cache.contains(old_fp)
        assert cache.contains(FP)

    def test_explicit_age_and_clock(self, cache):
        cache.store(FP, b"image")
        assert cache.sweep(max_age=60, now=time.time() + 30) == 0
        assert cache.sweep(max_age=60, now=time.time() + 120) == 1

    def test_skips_entries_being_written(self, cache):
        age(cache.store(FP, b"image"), 7200)
        cache._writing.add(FP)
        assert cache.sweep() == 0
        cache._writing.discard(FP)
        assert cache.sweep() == 1

    def test_removes_stale_temporary_files(self, cache):
        partial = cache.cache_dir / f".{FP}.x1y2.partial"
        partial.write_bytes(b"half")
        fresh = cache.cache_dir / f".{FP}.z3w4.partial"
        fresh.write_bytes(b"half")
        age(partial, 10 * 86400)

        assert cache.sweep() == 0
        assert not partial.exists()
        assert fresh.exists()

    def test_ignores_foreign_files(self, cache):
        other = cache.cache_dir / "notes.txt"
        other.write_text("keep")
        age(other, 10 * 86400)
        cache.sweep()
        assert other.exists()

    def test_clear(self, cache):
        cache.store(FP, b"a")
        cache.store(hashlib.sha256(b"b").hexdigest(), b"b")
        assert cache.clear() == 2
        assert cache.stats()["entries"] == 0

    def test_stats(self, cache):
        assert cache.stats()["oldest_entry"] == "N/A"
        cache.store(FP, b"12345")
        stats = cache.stats()
        assert stats["entries"] == 1
        assert stats["total_size_bytes"] == 5
        assert stats["in_flight"] == 0

    def test_background_sweeper(self, cache):
        age(cache.store(FP, b"image"), 7200)
        cache.start_sweeper(interval=3600)
        try:
            deadline = time.time() + 5
            while cache.contains(FP) and time.time() < deadline:
                time.sleep(0.05)
            assert not cache.contains(FP)
        finally:
            cache.stop_sweeper(timeout=5)
        assert cache._sweeper is None
