"""
Tests for the per-application cache and its lock.
"""
import os
import shutil
import threading
import time

import pytest

from jcapsule.cache import lock as lock_module
from jcapsule.cache.app_cache import (
    AppCache,
    CacheState,
    init_cache_root,
    open_cache_root,
    should_extract_entry,
)
from jcapsule.cache.lock import FileLock
from jcapsule.errors import CacheUnavailableError


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / "app.jar"
    path.write_bytes(b"archive")
    old = time.time() - 60
    os.utime(path, (old, old))
    return path


def extractor(calls):
    def _extract(target):
        calls.append(target)
        (target / "payload.txt").write_text("data")

    return _extract


class TestShouldExtractEntry:
    """Tests for the extraction filter."""

    def test_filter(self):
        assert should_extract_entry("foo.jar")
        assert should_extract_entry("lib/native.so")
        assert not should_extract_entry("Capsule.class")
        assert not should_extract_entry("Capsule$1.class")
        assert not should_extract_entry("com/acme/Foo.class")
        assert not should_extract_entry("capsule/Helper.txt")
        assert not should_extract_entry("META-INF/MANIFEST.MF")
        assert not should_extract_entry("lib/")


class TestCacheRoot:
    """Tests for cache root creation."""

    def test_init_creates_layout(self, tmp_path):
        root = init_cache_root(tmp_path / "root")
        assert (root / "apps").is_dir()
        assert (root / "deps").is_dir()

    def test_disabled_cache_uses_temporary_root(self):
        root, temporary = open_cache_root(None)
        try:
            assert temporary
            assert (root / "apps").is_dir()
        finally:
            shutil.rmtree(root)

    def test_persistent_root(self, tmp_path):
        root, temporary = open_cache_root(tmp_path / "root")
        assert root == tmp_path / "root"
        assert not temporary


class TestAppCache:
    """Tests for AppCache freshness and rebuild."""

    def test_first_prepare_extracts(self, tmp_path, archive):
        calls = []
        cache = AppCache(tmp_path / "apps" / "app", archive)
        assert cache.prepare(extractor(calls)) == CacheState.REBUILDING
        assert cache.is_locked
        cache.mark_ready()
        assert not cache.is_locked
        assert cache.state == CacheState.READY
        assert cache.rebuilt
        assert (cache.directory / "payload.txt").is_file()
        assert len(calls) == 1

    def test_fresh_cache_not_extracted_again(self, tmp_path, archive):
        calls = []
        first = AppCache(tmp_path / "apps" / "app", archive)
        first.prepare(extractor(calls))
        first.mark_ready()

        second = AppCache(tmp_path / "apps" / "app", archive)
        assert second.prepare(extractor(calls)) == CacheState.FRESH
        second.mark_ready()
        assert second.up_to_date
        assert len(calls) == 1

    def test_newer_archive_triggers_rebuild(self, tmp_path, archive):
        calls = []
        first = AppCache(tmp_path / "apps" / "app", archive)
        first.prepare(extractor(calls))
        first.mark_ready()
        (first.directory / "stale.txt").write_text("old")

        future = time.time() + 60
        os.utime(archive, (future, future))
        second = AppCache(tmp_path / "apps" / "app", archive)
        assert second.prepare(extractor(calls)) == CacheState.REBUILDING
        second.mark_ready()
        assert len(calls) == 2
        assert not (second.directory / "stale.txt").exists()
        assert second.lock_file.exists()

    def test_reset_forces_rebuild(self, tmp_path, archive):
        calls = []
        for reset in (False, True):
            cache = AppCache(tmp_path / "apps" / "app", archive, reset=reset)
            cache.prepare(extractor(calls))
            cache.mark_ready()
        assert len(calls) == 2

    def test_failed_launch_leaves_cache_stale(self, tmp_path, archive):
        calls = []
        first = AppCache(tmp_path / "apps" / "app", archive)
        first.prepare(extractor(calls))
        first.release()

        second = AppCache(tmp_path / "apps" / "app", archive)
        assert second.prepare(extractor(calls)) == CacheState.REBUILDING
        second.mark_ready()

    def test_require_before_prepare(self, tmp_path, archive):
        cache = AppCache(tmp_path / "apps" / "app", archive)
        with pytest.raises(CacheUnavailableError) as exc_info:
            cache.require("lib/foo.jar")
        assert exc_info.value.reason == CacheUnavailableError.NOT_YET_AVAILABLE

    def test_concurrent_launchers_extract_once(self, tmp_path, archive):
        calls = []
        results = []
        barrier = threading.Barrier(4)

        def launch():
            cache = AppCache(tmp_path / "apps" / "app", archive)
            barrier.wait()
            try:
                cache.prepare(extractor(calls))
                results.append(cache.rebuilt)
                cache.mark_ready()
            finally:
                cache.release()

        threads = [threading.Thread(target=launch) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(calls) == 1
        assert sorted(results) == [False, False, False, True]

    def test_cleanup_removes_temporary_root(self, tmp_path, archive):
        root = init_cache_root(tmp_path / "temp-root")
        cache = AppCache(root / "apps" / "app", archive, temporary_root=root)
        cache.prepare()
        cache.mark_ready()
        cache.cleanup()
        assert not root.exists()


@pytest.mark.skipif(lock_module._get_fcntl() is None, reason="POSIX file locking only")
class TestFileLock:
    """Tests for FileLock."""

    def test_exclusive(self, tmp_path):
        first, second = FileLock(tmp_path / ".lock"), FileLock(tmp_path / ".lock")
        assert first.acquire()
        assert not second.acquire(blocking=False)
        first.release()
        assert second.acquire(blocking=False)
        second.release()

    def test_release_is_idempotent(self, tmp_path):
        lock = FileLock(tmp_path / ".lock")
        lock.release()
        with lock:
            assert lock.is_locked
        assert not lock.is_locked
