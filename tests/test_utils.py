import threading
from datetime import timedelta
from pathlib import Path

import pytest

from nucleusflow.cache import BoundedCache
from nucleusflow.concurrency import RateLimiter, ReadWriteLock
from nucleusflow.utils import (
    ensure_clean_dir,
    first_paragraph,
    generate_heading_id,
    is_within,
    parse_bool,
    parse_duration,
    parse_string_set,
    slugify,
    titleize,
)


def test_slugify_and_titleize():
    assert slugify("2024-01-15-Hello World") == "hello-world"
    assert slugify("!!!") == "index"
    assert titleize("2024-01-15-my_first-post.md") == "My First Post"


def test_generate_heading_id():
    assert generate_heading_id("Hello <em>World</em>!") == "hello-world"
    assert generate_heading_id("???") == "section"


def test_first_paragraph_skips_headings():
    text = "# Title\n\n![img](a.png)\n\nThe <b>first</b>   paragraph.\n\nSecond."
    assert first_paragraph(text) == "The first paragraph."
    assert first_paragraph("a" * 300, limit=10) == "a" * 10


def test_value_coercion():
    assert parse_bool("Yes") is True
    assert parse_bool("off") is False
    with pytest.raises(ValueError):
        parse_bool("sometimes")
    assert parse_duration("5m") == timedelta(minutes=5)
    assert parse_duration("250ms") == timedelta(milliseconds=250)
    assert parse_duration(30) == timedelta(seconds=30)
    with pytest.raises(ValueError):
        parse_duration("soon")
    assert parse_string_set("a, b,,c") == frozenset({"a", "b", "c"})
    assert parse_string_set(["x", " y "]) == frozenset({"x", "y"})


def test_ensure_clean_dir_and_is_within(tmp_path):
    target = tmp_path / "out"
    target.mkdir()
    (target / "stale.txt").write_text("x", encoding="utf-8")
    ensure_clean_dir(target)
    assert target.exists() and not any(target.iterdir())
    assert is_within(target / "a", target)
    assert not is_within(Path("/etc"), target)


def test_cache_evicts_by_size():
    cache = BoundedCache(2)
    cache.put("a", 1)
    cache.put("b", 2)
    assert cache.get("a") == 1
    cache.put("c", 3)
    assert "b" not in cache
    assert cache.keys() == ["a", "c"]
    assert cache.stats.evictions == 1


def test_cache_expires_by_ttl():
    now = [0.0]
    cache = BoundedCache(10, ttl=5, clock=lambda: now[0])
    cache.put("a", 1)
    now[0] = 4.9
    assert cache.get("a") == 1
    now[0] = 5.0
    assert cache.get("a") is None
    assert cache.stats.misses == 1
    assert len(cache) == 0


def test_cache_get_or_create_runs_factory_once():
    cache = BoundedCache(10)
    calls = []
    barrier = threading.Barrier(8)

    def factory():
        calls.append(1)
        return "value"

    def worker():
        barrier.wait()
        cache.get_or_create("k", factory)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(calls) == 1
    assert cache.get_or_create("k", factory) == ("value", False)


def test_rate_limiter_spaces_starts():
    now = [0.0]
    slept = []

    def sleep(seconds):
        slept.append(seconds)

    limiter = RateLimiter(2, clock=lambda: now[0], sleep=sleep)
    limiter.acquire()
    limiter.acquire()
    limiter.acquire()
    assert slept == [0.5, 1.0]
    with pytest.raises(ValueError):
        RateLimiter(0)


def test_read_write_lock_excludes_writer_while_reading():
    lock = ReadWriteLock()
    events = []
    reading = threading.Event()
    release = threading.Event()

    def reader():
        with lock.read_locked():
            reading.set()
            release.wait(timeout=5)
            events.append("read-done")

    def writer():
        reading.wait(timeout=5)
        with lock.write_locked():
            events.append("write")

    threads = [threading.Thread(target=reader), threading.Thread(target=writer)]
    for t in threads:
        t.start()
    reading.wait(timeout=5)
    release.set()
    for t in threads:
        t.join(timeout=5)
    assert events == ["read-done", "write"]
