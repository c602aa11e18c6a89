import asyncio
import random
from typing import List, Optional

import structlog

from ..config import Config
from ..events import EventBus
from ..models import MATERIAL_TYPES, SIMULATED_SOURCE_ID, Severity, Truck, TruckStatus

log = structlog.get_logger()

WEIGHT_LABELS = ("1kg", "5kg", "2 un", "10kg", "3kg")

INITIAL_TRUCKS = (
    Truck(id="T1", name="Carlos S.", vehicle="Caminhão Leve", position=(-23.5485, -46.6313), status=TruckStatus.EN_ROUTE),
    Truck(id="T2", name="Ana P.", vehicle="Van", position=(-23.5600, -46.6400), status=TruckStatus.AVAILABLE),
    Truck(id="T3", name="João M.", vehicle="Caminhão Leve", position=(-23.5400, -46.6200), status=TruckStatus.EN_ROUTE),
    Truck(id="T4", name="Roberto F.", vehicle="Carroça", position=(-23.5550, -46.6250), status=TruckStatus.AVAILABLE),
)


class ActorSimulator:
    """
    Animates the truck roster and synthesizes organic demand.

    Two independent periodic tasks run while the simulation is enabled:
      - movement: every truck takes a bounded random step
      - demand:   with some probability, a new material appears near the city center

    Each task is its own cancellation token. Disabling cancels both right away;
    enabling starts fresh tasks that wait a full period before ticking, so
    ticks missed while disabled are never replayed.
    """

    def __init__(self, config: Config, registry, notifications, bus: Optional[EventBus] = None, rng=None):
        self.config = config
        self.registry = registry
        self.notifications = notifications
        self.bus = bus or registry.bus
        self.rng = rng or random.Random(config.simulation_seed)
        self._trucks: List[Truck] = list(INITIAL_TRUCKS)
        self._movement_task: Optional[asyncio.Task] = None
        self._demand_task: Optional[asyncio.Task] = None
        self._closed = False
        self.stats = {
            "movement_ticks": 0,
            "demand_ticks": 0,
            "materials_spawned": 0,
            "tick_errors": 0,
            "enabled_count": 0,
            "last_spawned_id": None,
        }

    @property
    def enabled(self):
        return self._movement_task is not None

    def trucks(self):
        return list(self._trucks)

    # --- enable / disable ---

    def enable(self):
        if self._closed:
            log.warning("simulation_enable_after_close")
            return False
        if self.enabled:
            return True

        self._movement_task = asyncio.create_task(
            self._periodic(self.config.movement_interval, self.move_once, "movement")
        )
        self._demand_task = asyncio.create_task(
            self._periodic(self.config.demand_interval, self.demand_once, "demand")
        )
        self.stats["enabled_count"] += 1
        log.info("simulation_enabled",
                 movement_interval=self.config.movement_interval,
                 demand_interval=self.config.demand_interval)
        self.bus.publish("simulation.enabled", {"enabled": True})
        return True

    def disable(self):
        if not self.enabled:
            return False

        for task in (self._movement_task, self._demand_task):
            task.cancel()
        self._movement_task = None
        self._demand_task = None

        log.info("simulation_disabled")
        self.bus.publish("simulation.disabled", {"enabled": False})
        return False

    def toggle(self):
        return self.disable() if self.enabled else self.enable()

    def close(self):
        """Teardown: cancel timers for good. Safe to call more than once."""
        self.disable()
        self._closed = True

    async def _periodic(self, interval, tick, name):
        while True:
            await asyncio.sleep(interval)
            try:
                tick()
            except Exception as e:
                self.stats["tick_errors"] += 1
                log.error("simulation_tick_failed", process=name, error=str(e))

    # --- ticks ---

    def move_once(self):
        """Random-walk every truck. New positions come from one snapshot of the old ones."""
        step = self.config.movement_step
        snapshot = self._trucks
        moved = []
        for truck in snapshot:
            lat, lng = truck.position
            d_lat = (self.rng.random() - 0.5) * 2 * step
            d_lng = (self.rng.random() - 0.5) * 2 * step
            moved.append(truck.model_copy(update={"position": (lat + d_lat, lng + d_lng)}))
        self._trucks = moved
        self.stats["movement_ticks"] += 1

        self.bus.publish(
            "trucks.moved",
            {"trucks": [t.model_dump(mode="json") for t in moved]},
        )
        return moved

    def demand_once(self):
        """One Bernoulli trial; on success report a synthetic material."""
        self.stats["demand_ticks"] += 1
        if self.rng.random() >= self.config.demand_probability:
            return None

        material_type = self.rng.choice(MATERIAL_TYPES)
        weight = self.rng.choice(WEIGHT_LABELS)
        center_lat, center_lng = self.config.city_center
        jitter = self.config.demand_jitter
        lat = center_lat + (self.rng.random() - 0.5) * 2 * jitter
        lng = center_lng + (self.rng.random() - 0.5) * 2 * jitter

        material = self.registry.create(
            material_type, weight, (lat, lng), generator_id=SIMULATED_SOURCE_ID
        )
        self.stats["materials_spawned"] += 1
        self.stats["last_spawned_id"] = material.id

        self.notifications.post(
            f"Novo descarte de {material_type} detectado na região!", Severity.INFO
        )
        return material

    def get_stats(self):
        stats = dict(self.stats)
        stats["enabled"] = self.enabled
        stats["truck_count"] = len(self._trucks)
        return stats
