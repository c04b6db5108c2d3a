from __future__ import annotations

import asyncio
import fcntl
import json
import os
import time

import pytest

from adapters.group_store import FileGroupStore, safe_group_dirname
from core.config import PushConfig
from core.errors import GroupLockTimeout
from core.models import RelayUnit


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class Collector:
    def __init__(self) -> None:
        self.units: list[RelayUnit] = []
        self.contents: list[list[bytes]] = []

    async def __call__(self, unit: RelayUnit) -> None:
        self.units.append(unit)
        contents = []
        for item in unit.items:
            with open(item.path, "rb") as handle:
                contents.append(handle.read())
        self.contents.append(contents)


def _store(tmp_path, clock: FakeClock, **overrides) -> FileGroupStore:
    config = PushConfig(store_dir=str(tmp_path), idle_seconds=2.0, **overrides)
    return FileGroupStore(config, album_max_files=10, clock=clock)


def test_offer_writes_member_and_merges_caption(tmp_path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock)

    async def scenario() -> None:
        await store.offer("g1", b"one", "a.jpg", "", 11)
        clock.now += 1
        await store.offer("g1", b"two", "b.jpg", "caption", 12)
        clock.now += 1
        await store.offer("g1", b"three", "c.jpg", "ignored", 13)

    asyncio.run(scenario())

    with open(os.path.join(store.group_dir("g1"), "meta.json"), encoding="utf-8") as handle:
        meta = json.load(handle)
    assert meta["caption"] == "caption"
    assert meta["created_at"] == 1000.0
    assert meta["updated_at"] == 1002.0
    assert [entry["msg_id"] for entry in meta["items"]] == [11, 12, 13]
    assert all(os.path.isfile(entry["path"]) for entry in meta["items"])


def test_sweep_waits_for_idle_threshold_then_flushes_in_id_order(tmp_path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock)
    collector = Collector()

    async def scenario() -> tuple[int, int]:
        await store.offer("g1", b"second", "b.jpg", "", 21)
        await store.offer("g1", b"first", "a.jpg", "hello", 20)
        early = await store.sweep(collector)
        clock.now += 2.5
        late = await store.sweep(collector)
        return early, late

    early, late = asyncio.run(scenario())

    assert (early, late) == (0, 1)
    unit = collector.units[0]
    assert [item.message_id for item in unit.items] == [20, 21]
    assert collector.contents == [[b"first", b"second"]]
    assert unit.caption == "hello"
    assert unit.group_id == "g1"
    assert not os.path.exists(store.group_dir("g1"))


def test_second_sweep_finds_nothing(tmp_path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock)
    collector = Collector()

    async def scenario() -> list[int]:
        await store.offer("g1", b"x", "a.jpg", "", 1)
        clock.now += 5
        return [await store.sweep(collector), await store.sweep(collector)]

    assert asyncio.run(scenario()) == [1, 0]
    assert len(collector.units) == 1


def test_sweep_skips_members_whose_file_vanished(tmp_path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock)
    collector = Collector()

    async def scenario() -> None:
        gone = await store.offer("g1", b"x", "a.jpg", "", 1)
        await store.offer("g1", b"y", "b.jpg", "", 2)
        os.remove(gone.path)
        clock.now += 5
        await store.sweep(collector)

    asyncio.run(scenario())

    assert [item.message_id for item in collector.units[0].items] == [2]


def test_malformed_records_are_removed(tmp_path) -> None:
    clock = FakeClock(time.time())
    store = _store(tmp_path, clock)
    collector = Collector()

    no_timestamp = os.path.join(store.groups_dir, "no_timestamp")
    os.makedirs(no_timestamp)
    with open(os.path.join(no_timestamp, "meta.json"), "w", encoding="utf-8") as handle:
        json.dump({"items": []}, handle)

    broken = os.path.join(store.groups_dir, "broken")
    os.makedirs(broken)
    with open(os.path.join(broken, "meta.json"), "w", encoding="utf-8") as handle:
        handle.write("{not json")
    os.utime(broken, (0, 0))

    assert asyncio.run(store.sweep(collector)) == 0
    assert collector.units == []
    assert not os.path.exists(no_timestamp)
    assert not os.path.exists(broken)


def test_fresh_directory_without_metadata_is_left_alone(tmp_path) -> None:
    store = _store(tmp_path, FakeClock(time.time()))
    pending = os.path.join(store.groups_dir, "pending")
    os.makedirs(pending)

    assert asyncio.run(store.sweep(Collector())) == 0
    assert os.path.isdir(pending)


def test_unparseable_timestamp_does_not_block_later_albums(tmp_path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock)
    collector = Collector()

    bad = os.path.join(store.groups_dir, "0bad")
    os.makedirs(bad)
    with open(os.path.join(bad, "meta.json"), "w", encoding="utf-8") as handle:
        json.dump({"updated_at": "yesterday", "items": []}, handle)

    async def scenario() -> int:
        await store.offer("g1", b"x", "a.jpg", "", 1)
        clock.now += 10
        return await store.sweep(collector)

    assert asyncio.run(scenario()) == 1
    assert [item.message_id for item in collector.units[0].items] == [1]
    assert not os.path.exists(bad)
    assert not os.path.exists(store.group_dir("g1"))


def test_member_with_bad_message_id_is_dropped(tmp_path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock)
    collector = Collector()

    async def scenario() -> None:
        await store.offer("g1", b"x", "a.jpg", "", 1)
        await store.offer("g1", b"y", "b.jpg", "", 2)
        meta_path = os.path.join(store.group_dir("g1"), "meta.json")
        with open(meta_path, encoding="utf-8") as handle:
            meta = json.load(handle)
        meta["items"][1]["msg_id"] = "two"
        with open(meta_path, "w", encoding="utf-8") as handle:
            json.dump(meta, handle)
        clock.now += 10
        await store.sweep(collector)

    asyncio.run(scenario())

    assert [item.message_id for item in collector.units[0].items] == [1]
    assert not os.path.exists(store.group_dir("g1"))


def test_sweep_skips_album_locked_by_another_invocation(tmp_path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock)
    collector = Collector()
    asyncio.run(store.offer("g1", b"x", "a.jpg", "", 1))
    clock.now += 5

    with open(os.path.join(store.group_dir("g1"), "lock"), "a+") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        try:
            assert asyncio.run(store.sweep(collector)) == 0
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    assert collector.units == []
    assert asyncio.run(store.sweep(collector)) == 1


def test_offer_times_out_when_album_stays_locked(tmp_path) -> None:
    store = _store(tmp_path, FakeClock(), lock_timeout_seconds=0.1)
    directory = store.group_dir("g1")
    os.makedirs(directory)

    with open(os.path.join(directory, "lock"), "a+") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        try:
            with pytest.raises(GroupLockTimeout):
                asyncio.run(store.offer("g1", b"x", "a.jpg", "", 1))
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def test_failed_flush_still_removes_record(tmp_path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock)

    async def failing(unit: RelayUnit) -> None:
        raise RuntimeError("sink down")

    async def scenario() -> int:
        await store.offer("g1", b"x", "a.jpg", "", 1)
        clock.now += 5
        return await store.sweep(failing)

    assert asyncio.run(scenario()) == 0
    assert not os.path.exists(store.group_dir("g1"))


def test_group_ids_map_to_safe_directory_names() -> None:
    assert safe_group_dirname("13571113171923") == "13571113171923"
    assert safe_group_dirname("-100/../x y") == "-100____x_y"
