import json

import pytest
from pydantic import ValidationError

from reflow.events import EventBus
from reflow.models import MaterialStatus
from reflow.services.registry import DEFAULT_STORAGE_KEY, SEED_MATERIALS, MaterialRegistry
from reflow.storage import SQLiteStore


class FakeStore:
    def __init__(self, initial=None, fail_reads=False, fail_writes=False):
        self.data = dict(initial or {})
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.writes = 0

    def get(self, key):
        if self.fail_reads:
            raise RuntimeError("disk unavailable")
        return self.data.get(key)

    def put(self, key, value):
        if self.fail_writes:
            raise RuntimeError("disk full")
        self.writes += 1
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


def _build_registry(tmp_path, **kwargs):
    store = SQLiteStore(str(tmp_path / "reflow.db"))
    return MaterialRegistry(store, **kwargs), store


def _records(registry):
    return [m.to_record() for m in registry.list()]


def test_absent_storage_falls_back_to_seed(tmp_path):
    registry, _ = _build_registry(tmp_path)
    assert registry.list() == list(SEED_MATERIALS)
    assert [m.id for m in registry.list()] == ["1", "2", "3"]


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        '{"id": "1"}',
        '[{"id": "1", "type": "Metal"}]',
        '[{"id": "9", "type": "Metal", "weight": "1kg", "position": [1, 2], "status": "LOST", "createdAt": "2024-01-01T00:00:00+00:00"}]',
    ],
)
def test_corrupt_storage_falls_back_to_seed(raw):
    store = FakeStore({DEFAULT_STORAGE_KEY: raw})
    registry = MaterialRegistry(store)
    assert registry.list() == list(SEED_MATERIALS)


def test_duplicate_ids_in_storage_fall_back_to_seed():
    record = {
        "id": "dup",
        "type": "Metal",
        "weight": "1kg",
        "position": [-23.5, -46.6],
        "status": "AVAILABLE",
        "createdAt": "2024-01-01T00:00:00+00:00",
    }
    store = FakeStore({DEFAULT_STORAGE_KEY: json.dumps([record, record])})
    registry = MaterialRegistry(store)
    assert registry.list() == list(SEED_MATERIALS)


def test_in_transit_without_collector_is_treated_as_corrupt():
    record = {
        "id": "x",
        "type": "Metal",
        "weight": "1kg",
        "position": [-23.5, -46.6],
        "status": "IN_TRANSIT",
        "createdAt": "2024-01-01T00:00:00+00:00",
    }
    store = FakeStore({DEFAULT_STORAGE_KEY: json.dumps([record])})
    registry = MaterialRegistry(store)
    assert registry.list() == list(SEED_MATERIALS)


def test_unreadable_storage_falls_back_to_seed():
    registry = MaterialRegistry(FakeStore(fail_reads=True))
    assert registry.list() == list(SEED_MATERIALS)


def test_plastic_claim_complete_scenario(tmp_path):
    registry, _ = _build_registry(tmp_path)

    material = registry.create("Plástico", "2kg", (-23.5495, -46.6323))
    assert material.status == MaterialStatus.AVAILABLE
    assert material.collector_id is None
    assert "collectorId" not in material.to_record()

    assert registry.claim(material.id, "C1") is True
    claimed = registry.get(material.id)
    assert claimed.status == MaterialStatus.IN_TRANSIT
    assert claimed.collector_id == "C1"

    assert registry.claim(material.id, "C2") is False
    assert registry.get(material.id).collector_id == "C1"
    assert registry.get(material.id).status == MaterialStatus.IN_TRANSIT

    assert registry.complete(material.id) is True
    done = registry.get(material.id)
    assert done.status == MaterialStatus.COLLECTED
    assert done.collector_id == "C1"


def test_claim_race_first_claim_wins(tmp_path):
    registry, _ = _build_registry(tmp_path)
    material = registry.create("Metal", "5kg", (-23.55, -46.63))
    others_before = [m for m in registry.list() if m.id != material.id]

    results = [registry.claim(material.id, "B"), registry.claim(material.id, "A")]

    assert results == [True, False]
    assert registry.get(material.id).collector_id == "B"
    assert [m for m in registry.list() if m.id != material.id] == others_before


def test_claim_unknown_material_is_silent_noop(tmp_path):
    registry, store = _build_registry(tmp_path)
    before = _records(registry)

    assert registry.claim("does-not-exist", "C1") is False
    assert registry.complete("does-not-exist") is False
    assert _records(registry) == before
    # nothing was written either
    assert store.get(DEFAULT_STORAGE_KEY) is None


@pytest.mark.parametrize("actor", [None, ""])
def test_claim_without_collector_is_ignored_and_survives_restart(tmp_path, actor):
    registry, store = _build_registry(tmp_path)
    kept = registry.create("Vidro", "3kg", (-23.55, -46.63))
    target = registry.create("Papel", "10kg", (-23.56, -46.64))

    assert registry.claim(target.id, actor) is False
    assert registry.get(target.id).status == MaterialStatus.AVAILABLE
    assert "collectorId" not in registry.get(target.id).to_record()

    restarted = MaterialRegistry(store)
    assert [m.id for m in restarted.list()] == ["1", "2", "3", kept.id, target.id]
    assert _records(restarted) == _records(registry)


def test_complete_without_claim_forces_collected(tmp_path):
    registry, _ = _build_registry(tmp_path)
    assert registry.complete("2") is True
    material = registry.get("2")
    assert material.status == MaterialStatus.COLLECTED
    assert material.collector_id is None

    # terminal: a later claim cannot pull it back
    assert registry.claim("2", "C9") is False
    assert registry.get("2").status == MaterialStatus.COLLECTED


def test_status_sequence_never_regresses(tmp_path):
    bus = EventBus()
    registry, _ = _build_registry(tmp_path, bus=bus)
    order = [MaterialStatus.AVAILABLE, MaterialStatus.IN_TRANSIT, MaterialStatus.COLLECTED]
    seen = {}
    bus.subscribe(lambda e: seen.setdefault(e.payload.get("id"), []).append(e.payload.get("status")))

    a = registry.create("Vidro", "1kg", (0.0, 0.0))
    b = registry.create("Papel", "3kg", (0.0, 0.0))
    registry.claim(a.id, "C1")
    registry.complete(b.id)
    registry.claim(b.id, "C2")
    registry.complete(a.id)
    registry.claim(a.id, "C3")
    registry.complete(a.id)

    for statuses in (seen[a.id], seen[b.id]):
        ranks = [order.index(MaterialStatus(s)) for s in statuses]
        assert ranks == sorted(ranks)


def test_ids_are_unique_even_when_generator_repeats(tmp_path):
    draws = iter(["1", "x", "x", "y"])
    registry, _ = _build_registry(tmp_path, id_factory=lambda: next(draws))

    first = registry.create("Metal", "1kg", (0.0, 0.0))
    second = registry.create("Metal", "1kg", (0.0, 0.0))

    assert first.id == "x"
    assert second.id == "y"
    ids = [m.id for m in registry.list()]
    assert len(ids) == len(set(ids))


def test_many_creates_produce_distinct_ids(tmp_path):
    registry, _ = _build_registry(tmp_path)
    created = [registry.create("Papel", "1kg", (0.0, float(i))) for i in range(200)]
    assert len({m.id for m in created}) == 200
    assert len({m.id for m in registry.list()}) == len(registry)


def test_position_and_created_at_never_change(tmp_path):
    registry, _ = _build_registry(tmp_path)
    material = registry.create("Eletrônico", "1 un", (-23.1, -46.2))
    position, created_at = material.position, material.created_at

    registry.claim(material.id, "C1")
    assert registry.get(material.id).position == position
    assert registry.get(material.id).created_at == created_at

    registry.complete(material.id)
    assert registry.get(material.id).position == position
    assert registry.get(material.id).created_at == created_at

    with pytest.raises(ValidationError):
        material.position = (0.0, 0.0)


def test_list_preserves_insertion_order(tmp_path):
    registry, _ = _build_registry(tmp_path)
    a = registry.create("Metal", "1kg", (0.0, 0.0))
    b = registry.create("Vidro", "1kg", (0.0, 0.0))
    registry.claim(a.id, "C1")

    assert [m.id for m in registry.list()] == ["1", "2", "3", a.id, b.id]


def test_list_is_a_snapshot(tmp_path):
    registry, _ = _build_registry(tmp_path)
    snapshot = registry.list()
    snapshot.clear()
    assert len(registry) == 3


def test_persistence_round_trip(tmp_path):
    registry, store = _build_registry(tmp_path)
    a = registry.create("Plástico", "2kg", (-23.5495, -46.6323), generator_id="U1")
    b = registry.create("Metal", "5kg", (-23.5, -46.6))
    registry.claim(a.id, "C1")
    registry.complete(b.id)

    restored = MaterialRegistry(store)

    assert _records(restored) == _records(registry)
    assert [m.created_at for m in restored.list()] == [m.created_at for m in registry.list()]


def test_persisted_record_uses_documented_field_names(tmp_path):
    registry, store = _build_registry(tmp_path)
    material = registry.create("Plástico", "2kg", (-23.5, -46.6), generator_id="U1")
    registry.claim(material.id, "C1")

    records = json.loads(store.get(DEFAULT_STORAGE_KEY))
    assert len(records) == 4
    assert set(records[-1]) == {
        "id",
        "type",
        "weight",
        "position",
        "status",
        "generatorId",
        "collectorId",
        "createdAt",
    }
    assert records[-1]["position"] == [-23.5, -46.6]
    assert records[-1]["status"] == "IN_TRANSIT"


def test_every_mutation_is_persisted():
    store = FakeStore()
    registry = MaterialRegistry(store)
    material = registry.create("Metal", "1kg", (0.0, 0.0))
    registry.claim(material.id, "C1")
    registry.complete(material.id)
    registry.claim(material.id, "C2")  # ignored, no write

    assert store.writes == 3
    stored = json.loads(store.data[DEFAULT_STORAGE_KEY])
    assert stored[-1]["status"] == "COLLECTED"


def test_write_failure_keeps_memory_state():
    registry = MaterialRegistry(FakeStore(fail_writes=True))
    material = registry.create("Metal", "1kg", (0.0, 0.0))
    assert registry.get(material.id) == material
    assert registry.claim(material.id, "C1") is True


def test_reset_restores_seed_and_clears_storage(tmp_path):
    bus = EventBus()
    topics = []
    bus.subscribe(lambda e: topics.append(e.topic))
    registry, store = _build_registry(tmp_path, bus=bus)
    registry.create("Metal", "1kg", (0.0, 0.0))
    registry.claim("1", "C1")
    assert store.get(DEFAULT_STORAGE_KEY) is not None

    registry.reset()

    assert registry.list() == list(SEED_MATERIALS)
    assert store.get(DEFAULT_STORAGE_KEY) is None
    assert topics[-1] == "materials.reset"
    assert MaterialRegistry(store).list() == list(SEED_MATERIALS)


def test_mutations_publish_events(tmp_path):
    bus = EventBus()
    events = []
    bus.subscribe(events.append)
    registry, _ = _build_registry(tmp_path, bus=bus)

    material = registry.create("Metal", "1kg", (0.0, 0.0))
    registry.claim(material.id, "C1")
    registry.claim(material.id, "C2")
    registry.complete(material.id)

    assert [e.topic for e in events] == ["material.created", "material.claimed", "material.completed"]
    assert events[1].payload["collectorId"] == "C1"


def test_filter_summary_and_reverse_index(tmp_path):
    registry, _ = _build_registry(tmp_path)
    a = registry.create("Metal", "1kg", (0.0, 0.0), generator_id="U1")
    registry.claim(a.id, "C1")
    registry.claim("1", "C1")
    registry.claim("2", "C2")
    registry.complete("2")

    assert [m.id for m in registry.filter(type="Metal")] == ["3", a.id]
    assert [m.id for m in registry.filter(status=MaterialStatus.IN_TRANSIT)] == ["1", a.id]
    assert [m.id for m in registry.filter(generator_id="U1")] == [a.id]
    assert [m.id for m in registry.filter(collector_id="C2")] == ["2"]

    summary = registry.summary()
    assert summary["total"] == 4
    assert summary["active_collections"] == 2
    assert summary["by_status"] == {"AVAILABLE": 1, "IN_TRANSIT": 2, "COLLECTED": 1}

    assert registry.collections_by_actor() == {"C1": ["1", a.id], "C2": ["2"]}
