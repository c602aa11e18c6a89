"""
Material registry: the single source of truth for reported materials.

Lifecycle per material:

    AVAILABLE --claim--> IN_TRANSIT --complete--> COLLECTED

`claim` is guarded (first claim wins, anything else is a silent no-op).
`complete` is not: it forces COLLECTED on any existing material. Every
applied mutation rewrites the full set to durable storage and is published
on the event bus.
"""
import json
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog

from ..events import EventBus
from ..models import Material, MaterialStatus

log = structlog.get_logger()

DEFAULT_STORAGE_KEY = "@reflow:materials"

_SEED_CREATED_AT = datetime.now(timezone.utc)

SEED_MATERIALS = (
    Material(id="1", type="Plástico", weight="2kg", position=(-23.5495, -46.6323), created_at=_SEED_CREATED_AT),
    Material(id="2", type="Eletrônico", weight="1 un", position=(-23.5515, -46.6343), created_at=_SEED_CREATED_AT),
    Material(id="3", type="Metal", weight="5kg", position=(-23.5500, -46.6360), created_at=_SEED_CREATED_AT),
)


def _short_id():
    return uuid.uuid4().hex[:12]


class MaterialRegistry:
    def __init__(
        self,
        store,
        bus: Optional[EventBus] = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
        id_factory=None,
        clock=None,
    ):
        self.store = store
        self.bus = bus or EventBus()
        self.storage_key = storage_key
        self._new_id = id_factory or _short_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._materials: List[Material] = []
        self._index: Dict[str, int] = {}  # id -> position in self._materials
        self._replace_all(self._restore())

    # --- persistence ---

    def _restore(self):
        """Load the persisted set, falling back to the seed set on any problem."""
        try:
            raw = self.store.get(self.storage_key)
        except Exception as e:
            log.warning("storage_fallback", reason="read_failed", error=str(e))
            return list(SEED_MATERIALS)

        if raw is None:
            log.info("storage_fallback", reason="absent", key=self.storage_key)
            return list(SEED_MATERIALS)

        try:
            records = json.loads(raw)
            if not isinstance(records, list):
                raise ValueError("stored value is not a list")
            materials = [Material.model_validate(r) for r in records]
            self._check_restored(materials)
        except Exception as e:
            log.warning("storage_fallback", reason="corrupt", error=str(e))
            return list(SEED_MATERIALS)

        log.info("materials_restored", count=len(materials))
        return materials

    @staticmethod
    def _check_restored(materials):
        seen = set()
        for m in materials:
            if m.id in seen:
                raise ValueError(f"duplicate material id {m.id}")
            seen.add(m.id)
            if m.status == MaterialStatus.AVAILABLE and m.collector_id is not None:
                raise ValueError(f"available material {m.id} has a collector")
            if m.status == MaterialStatus.IN_TRANSIT and m.collector_id is None:
                raise ValueError(f"material {m.id} in transit without a collector")

    def _persist(self):
        payload = json.dumps([m.to_record() for m in self._materials], ensure_ascii=False)
        try:
            self.store.put(self.storage_key, payload)
        except Exception as e:
            # memory stays authoritative; the next mutation rewrites everything
            log.error("storage_write_failed", key=self.storage_key, error=str(e))

    def _replace_all(self, materials):
        self._materials = list(materials)
        self._index = {m.id: i for i, m in enumerate(self._materials)}

    def _replace(self, material):
        self._materials[self._index[material.id]] = material

    # --- mutations ---

    def create(self, type, weight, position, generator_id=None):
        material_id = self._new_id()
        while material_id in self._index:
            material_id = self._new_id()

        material = Material(
            id=material_id,
            type=type,
            weight=weight,
            position=(float(position[0]), float(position[1])),
            generator_id=generator_id,
            created_at=self._clock(),
        )
        self._index[material.id] = len(self._materials)
        self._materials.append(material)
        self._persist()

        log.info("material_created", material_id=material.id, type=type, generator=generator_id)
        self.bus.publish("material.created", material.to_record())
        return material

    def claim(self, material_id, actor_id):
        """Assign an AVAILABLE material to `actor_id`. Returns whether it applied."""
        current = self.get(material_id)
        if not actor_id or current is None or current.status != MaterialStatus.AVAILABLE:
            log.debug(
                "claim_ignored",
                material_id=material_id,
                actor=actor_id,
                status=current.status.value if current else None,
            )
            return False

        updated = current.model_copy(
            update={"status": MaterialStatus.IN_TRANSIT, "collector_id": actor_id}
        )
        self._replace(updated)
        self._persist()

        log.info("material_claimed", material_id=material_id, collector=actor_id)
        self.bus.publish("material.claimed", updated.to_record())
        return True

    def complete(self, material_id):
        """Mark a material COLLECTED. No status guard: any existing material qualifies."""
        current = self.get(material_id)
        if current is None:
            log.debug("complete_ignored", material_id=material_id)
            return False

        previous = current.status
        updated = current.model_copy(update={"status": MaterialStatus.COLLECTED})
        self._replace(updated)
        self._persist()

        log.info("material_completed", material_id=material_id, previous_status=previous.value)
        self.bus.publish("material.completed", updated.to_record())
        return True

    def reset(self):
        self._replace_all(SEED_MATERIALS)
        try:
            self.store.delete(self.storage_key)
        except Exception as e:
            log.error("storage_clear_failed", key=self.storage_key, error=str(e))

        log.info("materials_reset", count=len(self._materials))
        self.bus.publish("materials.reset", {"materials": [m.to_record() for m in self._materials]})

    # --- reads ---

    def list(self):
        return list(self._materials)

    def get(self, material_id):
        idx = self._index.get(material_id)
        if idx is None:
            return None
        return self._materials[idx]

    def filter(self, type=None, status=None, generator_id=None, collector_id=None):
        result = []
        for m in self._materials:
            if type is not None and m.type != type:
                continue
            if status is not None and m.status != status:
                continue
            if generator_id is not None and m.generator_id != generator_id:
                continue
            if collector_id is not None and m.collector_id != collector_id:
                continue
            result.append(m)
        return result

    def summary(self):
        by_status = {s.value: 0 for s in MaterialStatus}
        for m in self._materials:
            by_status[m.status.value] += 1
        return {
            "total": len(self._materials),
            "by_status": by_status,
            "active_collections": by_status[MaterialStatus.IN_TRANSIT.value],
        }

    def collections_by_actor(self):
        """Reverse index actor id -> claimed material ids, derived from the set."""
        index: Dict[str, List[str]] = {}
        for m in self._materials:
            if m.collector_id is not None:
                index.setdefault(m.collector_id, []).append(m.id)
        return index

    def __len__(self):
        return len(self._materials)
