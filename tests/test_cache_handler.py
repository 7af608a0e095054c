"""
Test cache_handler

Validate the content-addressed wallpaper cache: deduplication, atomic writes, favorites,
eviction, and reconciling the index with what is actually on disk.

*** Fixtures ***
- cache, store_image, image_factory (defined in conftest.py)
"""

import os
import json
import time
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from wallter import image_handler
from wallter.cache_handler import (
    INDEX_FILENAME,
    CacheIOError,
    CacheStore,
    EvictionPolicy,
    InvalidImageData,
    NotFound,
    RecordFilter,
    SourceMeta,
)


def image_files(directory):
    """Every file in directory that is not the index."""

    return sorted(p.name for p in directory.iterdir() if p.name != INDEX_FILENAME)


def reopen(cache: CacheStore) -> CacheStore:
    return CacheStore(cache.downloads_dir, favorites_dir=cache.favorites_dir)


def test_put_stores_file_named_by_checksum(cache, image_factory):
    data = image_factory(320, 200)
    digest = image_handler.checksum(data)

    record = cache.put(digest, data, SourceMeta(id="abc123", url="https://example.test/abc123.png"))

    assert record.path == cache.downloads_dir / f"{digest}.png"
    assert record.path.read_bytes() == data
    assert record.id == "abc123"
    assert record.source_id == "abc123"
    assert record.source_url == "https://example.test/abc123.png"
    assert (record.width, record.height) == (320, 200)
    assert record.downloaded_at is not None
    assert record.last_set_at is None
    assert not record.favorite


def test_put_without_meta_uses_checksum_as_id(cache, image_factory):
    data = image_factory()
    digest = image_handler.checksum(data)

    assert cache.put(digest, data).id == digest


def test_put_same_content_twice_is_deduplicated(cache, image_factory):
    data = image_factory()
    digest = image_handler.checksum(data)

    first = cache.put(digest, data, SourceMeta(id="first"))
    second = cache.put(digest, data, SourceMeta(id="second"))

    assert first == second
    assert len(cache) == 1
    assert image_files(cache.downloads_dir) == [first.path.name]


def test_concurrent_put_writes_once(cache, image_factory):
    data = image_factory(800, 600)
    digest = image_handler.checksum(data)
    barrier = threading.Barrier(8)
    results = []

    def worker():
        barrier.wait()
        results.append(cache.put(digest, data))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 8
    assert all(record == results[0] for record in results)
    assert len(cache) == 1
    assert image_files(cache.downloads_dir) == [results[0].path.name]
    assert cache._locks == {}


def test_write_locks_are_released(cache, store_image, image_factory, tmp_path):
    for _ in range(5):
        store_image()

    path = tmp_path / "mine.png"
    path.write_bytes(image_factory())
    cache.add_local(path)

    with pytest.raises(InvalidImageData):
        cache.put("0" * 64, b"not an image")

    assert cache._locks == {}


def test_put_checksum_mismatch_leaves_nothing(cache, image_factory):
    data = image_factory()

    with pytest.raises(InvalidImageData):
        cache.put("0" * 64, data)

    assert len(cache) == 0
    assert image_files(cache.downloads_dir) == []


def test_put_non_image_is_rejected(cache):
    data = b"<html>Too Many Requests</html>"

    with pytest.raises(InvalidImageData):
        cache.put(image_handler.checksum(data), data)

    assert len(cache) == 0
    assert image_files(cache.downloads_dir) == []


def test_get_by_id_or_checksum(cache, store_image):
    record = store_image(source_id="wh-1")

    assert cache.get("wh-1") == record
    assert cache.get(record.checksum) == record
    assert record.checksum in cache


def test_get_unknown_raises(cache):
    with pytest.raises(NotFound):
        cache.get("nope")


def test_find_source(cache, store_image):
    record = store_image(source_id="wh-2")

    assert cache.find_source("wh-2") == record
    assert cache.find_source("wh-3") is None


def test_index_survives_reopen(cache, store_image):
    record = store_image(source_id="wh-1")

    assert reopen(cache).get("wh-1") == record


def test_mark_favorite_persists_and_links(cache, store_image):
    record = store_image()

    favorite = cache.mark_favorite(record.id)
    link = cache.favorites_dir / record.path.name

    assert favorite.favorite
    assert link.exists()
    assert reopen(cache).get(record.id).favorite

    cache.mark_favorite(record.id, False)

    assert not cache.get(record.id).favorite
    assert not link.exists()


def test_mark_favorite_unknown_raises(cache):
    with pytest.raises(NotFound):
        cache.mark_favorite("nope")


def test_mark_set_persists(cache, store_image):
    record = store_image()
    when = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

    cache.mark_set(record.id, when)

    assert reopen(cache).get(record.id).last_set_at == when


def test_list_filters(cache, store_image):
    plain = store_image()
    loved = store_image()
    cache.mark_favorite(loved.id)

    assert [r.id for r in cache.list()] == [plain.id, loved.id]
    assert [r.id for r in cache.list(RecordFilter.FAVORITES)] == [loved.id]
    assert [r.id for r in cache.list("non-favorites")] == [plain.id]


def test_evict_least_recently_used_first(cache, store_image):
    never_set, old, recent = store_image(), store_image(), store_image()
    now = datetime.now(timezone.utc)

    cache.mark_set(old.id, now - timedelta(days=3))
    cache.mark_set(recent.id, now + timedelta(minutes=1))

    assert cache.evict(EvictionPolicy(max_count=2)) == 1
    assert old.id not in [r.id for r in cache.list()]
    assert not old.path.exists()

    assert cache.evict(EvictionPolicy(max_count=1)) == 1
    assert [r.id for r in cache.list()] == [recent.id]


def test_evict_keeps_fresh_download(cache, store_image):
    first, second = store_image(), store_image()
    now = datetime.now(timezone.utc)
    cache.mark_set(first.id, now - timedelta(days=30))
    cache.mark_set(second.id, now - timedelta(days=29))

    fresh = store_image(source_id="fresh")

    assert cache.evict(EvictionPolicy(max_count=2)) == 1
    assert {r.id for r in cache.list()} == {second.id, fresh.id}
    assert cache.find_source("fresh") is not None


@pytest.mark.parametrize("max_count", [0, 1, 2, 3, 5])
def test_evict_never_removes_favorites(cache, store_image, max_count):
    records = [store_image() for _ in range(5)]
    favorites = {records[1].id, records[3].id}
    for id in favorites:
        cache.mark_favorite(id)

    cache.evict(EvictionPolicy(max_count=max_count))

    remaining = {r.id for r in cache.list()}
    assert favorites <= remaining
    assert len(remaining) == max(max_count, len(favorites))
    for id in favorites:
        assert cache.get(id).path.exists()


def test_evict_by_bytes(cache, store_image):
    records = [store_image(400, 400) for _ in range(3)]
    sizes = [r.path.stat().st_size for r in records]

    evicted = cache.evict(EvictionPolicy(max_bytes=sum(sizes) - 1))

    assert evicted == 1
    assert cache.total_bytes() <= sum(sizes) - 1


def test_evict_skips_local_images(cache, image_factory, tmp_path):
    path = tmp_path / "mine.png"
    path.write_bytes(image_factory())
    local = cache.add_local(path)

    assert cache.evict(EvictionPolicy(max_count=0)) == 0
    assert path.exists()
    assert cache.get(local.id).origin == "local"


def test_add_local_dir(cache, image_factory, tmp_path):
    folder = tmp_path / "wallpapers"
    (folder / "nested").mkdir(parents=True)
    (folder / "a.png").write_bytes(image_factory())
    (folder / "nested" / "b.jpg").write_bytes(image_factory(format="JPEG"))
    (folder / "readme.txt").write_text("not an image")

    records = cache.add_local_dir(folder)

    assert sorted(r.path.name for r in records) == ["a.png", "b.jpg"]
    assert len(cache) == 2
    # indexed in place, nothing copied into the cache
    assert image_files(cache.downloads_dir) == []


def test_add_local_dir_skips_unchanged_files(cache, image_factory, tmp_path):
    folder = tmp_path / "wallpapers"
    folder.mkdir()
    (folder / "a.png").write_bytes(image_factory())
    first = cache.add_local_dir(folder)

    with patch.object(image_handler, "file_checksum", wraps=image_handler.file_checksum) as spy:
        records = cache.add_local_dir(folder)

    assert spy.call_count == 0
    assert records == first


def test_add_local_dir_replaces_edited_file(cache, image_factory, tmp_path):
    folder = tmp_path / "wallpapers"
    folder.mkdir()
    path = folder / "a.png"
    path.write_bytes(image_factory())
    old = cache.add_local_dir(folder)[0]

    path.write_bytes(image_factory())
    later = time.time() + 60
    os.utime(path, (later, later))

    records = cache.add_local_dir(folder)

    assert len(cache) == 1
    assert records[0].checksum == image_handler.file_checksum(path)
    assert records[0].checksum != old.checksum
    with pytest.raises(NotFound):
        cache.get(old.checksum)


def test_add_local_rejects_non_image(cache, tmp_path):
    path = tmp_path / "fake.png"
    path.write_text("not an image")

    with pytest.raises(InvalidImageData):
        cache.add_local(path)


def test_reload_prunes_missing_files(cache, store_image):
    kept, lost = store_image(), store_image()
    lost.path.unlink()

    reopened = reopen(cache)

    assert [r.id for r in reopened.list()] == [kept.id]
    index = json.loads(reopened.index_path.read_text())
    assert list(index["records"]) == [kept.checksum]


def test_reload_prunes_changed_content(cache, store_image, image_factory):
    record = store_image()
    record.path.write_bytes(image_factory())

    assert len(reopen(cache)) == 0


def test_reload_removes_partial_downloads(cache):
    partial = cache.downloads_dir / ".abc.png.x1y2z3.part"
    partial.write_bytes(b"half an ima")

    reopen(cache)

    assert not partial.exists()


def test_reload_adopts_unindexed_images(cache, image_factory):
    data = image_factory(100, 50)
    stray = cache.downloads_dir / "stray.png"
    stray.write_bytes(data)

    reopened = reopen(cache)
    record = reopened.get(image_handler.checksum(data))

    assert record.path == stray
    assert (record.width, record.height) == (100, 50)


def test_reload_removes_duplicate_files(cache, store_image):
    record = store_image()
    copy = cache.downloads_dir / "copy.png"
    copy.write_bytes(record.path.read_bytes())

    reopened = reopen(cache)

    assert len(reopened) == 1
    assert not copy.exists()
    assert record.path.exists()


@pytest.mark.parametrize(
    "contents",
    [
        "{ this is not json",
        json.dumps({"version": 999, "records": {}}),
        json.dumps(["not", "an", "object"]),
    ],
)
def test_corrupt_index_is_rebuilt(cache, store_image, contents):
    record = store_image()
    cache.index_path.write_text(contents)

    reopened = reopen(cache)

    assert reopened.get(record.checksum).path == record.path
    assert json.loads(reopened.index_path.read_text())["version"] == 1


def test_unknown_index_fields_are_ignored(cache, store_image):
    record = store_image(source_id="wh-9")

    index = json.loads(cache.index_path.read_text())
    index["records"][record.checksum]["dominant_color"] = "#123456"
    index["generator"] = "a newer wallter"
    cache.index_path.write_text(json.dumps(index))

    assert reopen(cache).get("wh-9") == record


def test_unwritable_location_raises(tmp_path):
    blocker = tmp_path / "downloads"
    blocker.write_text("a file where the directory should be")

    with pytest.raises(CacheIOError):
        CacheStore(blocker)
