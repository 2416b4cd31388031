"""
Driver index: the on-duty drivers and their last reported positions.

This module provides:
- An in-process index (default) keyed by driver id
- A Redis GEO backed index used when REDIS_URL is configured, so several
  web/worker processes share one view of the fleet
- Radius queries with a bounding-box prefilter and exact Haversine check

Writes for one driver are serialized through a striped lock table; reads
work on immutable snapshots and never block writers for long.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone as dt_timezone
from typing import Dict, Iterable, List, Optional

import redis
from django.conf import settings
from django.utils import timezone

from common.utils import bounding_box, distance_km

logger = logging.getLogger(__name__)

STATE_AVAILABLE = "available"
STATE_BUSY = "busy"
STATE_OFFLINE = "offline"

VALID_STATES = (STATE_AVAILABLE, STATE_BUSY, STATE_OFFLINE)

LOCK_STRIPES = 64


# ---------------------- Configuration ----------------------

REDIS_GEO_CONFIG = {
    "DRIVERS_GEO_KEY": "drivers:geo",       # GEOADD key for driver positions
    "DRIVER_META_PREFIX": "driver:meta:",    # HSET for driver metadata
    "DRIVER_IDS_KEY": "drivers:known",       # SET of every tracked driver id
}


def get_redis_client() -> redis.Redis:
    """Get Redis client for GEO operations."""
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


# ---------------------- Data ----------------------

@dataclass(frozen=True)
class DriverEntry:
    """Snapshot of one driver as the index sees it."""
    driver_id: int
    vehicle_class: str = ""
    approved: bool = False
    state: str = STATE_OFFLINE
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_ts: Optional[datetime] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_dispatchable(self) -> bool:
        return self.approved and self.state == STATE_AVAILABLE and self.has_location


@dataclass(frozen=True)
class NearbyDriver:
    entry: DriverEntry
    distance_km: float

    @property
    def driver_id(self) -> int:
        return self.entry.driver_id


# ---------------------- In-process index ----------------------

class DriverIndex:
    """
    Process-wide index of drivers.

    - update_location() is monotonic on the timestamp; older updates are dropped
    - set_state() is idempotent
    - query() returns dispatchable drivers inside a Haversine radius,
      closest first, capped at ``result_cap``
    """

    def __init__(self, result_cap: int = 50):
        self.result_cap = result_cap
        self._entries: Dict[int, DriverEntry] = {}
        self._locks = [threading.RLock() for _ in range(LOCK_STRIPES)]

    # ---------------------- Storage hooks ----------------------

    def _get_entry(self, driver_id: int) -> Optional[DriverEntry]:
        return self._entries.get(driver_id)

    def _put_entry(self, entry: DriverEntry) -> None:
        self._entries[entry.driver_id] = entry

    def _delete_entry(self, driver_id: int) -> None:
        self._entries.pop(driver_id, None)

    def _iter_candidates(self, lat: float, lon: float, radius_km: float) -> Iterable[DriverEntry]:
        return list(self._entries.values())

    # ---------------------- Locking ----------------------

    def lock_for(self, driver_id: int) -> threading.RLock:
        """Lock serializing every state change for ``driver_id``."""
        return self._locks[hash(int(driver_id)) % LOCK_STRIPES]

    # ---------------------- Writes ----------------------

    def register(self, driver_id: int, vehicle_class: str, approved: bool) -> DriverEntry:
        """Track a driver (or refresh its vehicle/approval) without touching state or location."""
        driver_id = int(driver_id)
        with self.lock_for(driver_id):
            current = self._get_entry(driver_id) or DriverEntry(driver_id=driver_id)
            entry = replace(current, vehicle_class=vehicle_class, approved=bool(approved))
            self._put_entry(entry)
            return entry

    def update_location(self, driver_id: int, lat: float, lon: float, ts: Optional[datetime] = None) -> bool:
        """
        Record a position report.

        Returns False when the report is older than the one already held.
        """
        driver_id = int(driver_id)
        ts = ts or timezone.now()
        with self.lock_for(driver_id):
            current = self._get_entry(driver_id) or DriverEntry(driver_id=driver_id)
            if current.location_ts is not None and ts < current.location_ts:
                logger.debug(
                    "dropped stale location driver_id=%s ts=%s held=%s",
                    driver_id, ts.isoformat(), current.location_ts.isoformat(),
                )
                return False
            self._put_entry(replace(current, latitude=float(lat), longitude=float(lon), location_ts=ts))
            return True

    def set_state(self, driver_id: int, state: str) -> None:
        if state not in VALID_STATES:
            raise ValueError(f"Unknown driver state: {state}")
        driver_id = int(driver_id)
        with self.lock_for(driver_id):
            current = self._get_entry(driver_id) or DriverEntry(driver_id=driver_id)
            if current.state != state:
                self._put_entry(replace(current, state=state))

    def compare_and_set_state(self, driver_id: int, expected: str, new: str) -> bool:
        """Move the driver from ``expected`` to ``new``; False if it was in any other state."""
        if new not in VALID_STATES:
            raise ValueError(f"Unknown driver state: {new}")
        driver_id = int(driver_id)
        with self.lock_for(driver_id):
            current = self._get_entry(driver_id)
            if current is None or current.state != expected:
                return False
            self._put_entry(replace(current, state=new))
            return True

    def remove(self, driver_id: int) -> None:
        driver_id = int(driver_id)
        with self.lock_for(driver_id):
            self._delete_entry(driver_id)

    def clear(self) -> None:
        self._entries.clear()

    # ---------------------- Reads ----------------------

    def get(self, driver_id: int) -> Optional[DriverEntry]:
        return self._get_entry(int(driver_id))

    def get_state(self, driver_id: int) -> str:
        entry = self.get(driver_id)
        return entry.state if entry else STATE_OFFLINE

    def query(
        self,
        lat: float,
        lon: float,
        radius_km: float,
        vehicle_class: Optional[str] = None,
        exclude: Iterable[int] = (),
    ) -> List[NearbyDriver]:
        """
        Dispatchable drivers within ``radius_km`` of (lat, lon), closest first.

        The vehicle class and ``exclude`` filters run before the result cap.

        Ties on distance are broken by driver id so results are stable.
        """
        lat = float(lat)
        lon = float(lon)
        min_lat, max_lat, min_lon, max_lon = bounding_box(lat, lon, radius_km)
        # Boxes crossing the antimeridian only filter on latitude
        check_lon = min_lon >= -180.0 and max_lon <= 180.0
        excluded = {int(driver_id) for driver_id in exclude}

        results: List[NearbyDriver] = []
        for entry in self._iter_candidates(lat, lon, radius_km):
            if not entry.is_dispatchable:
                continue
            if vehicle_class and entry.vehicle_class != vehicle_class:
                continue
            if entry.driver_id in excluded:
                continue
            if not min_lat <= entry.latitude <= max_lat:
                continue
            if check_lon and not min_lon <= entry.longitude <= max_lon:
                continue
            dist = distance_km(lat, lon, entry.latitude, entry.longitude)
            if dist <= radius_km:
                results.append(NearbyDriver(entry=entry, distance_km=dist))

        results.sort(key=lambda item: (item.distance_km, item.entry.driver_id))
        return results[:self.result_cap]

    # ---------------------- Lifecycle ----------------------

    def load_from_database(self) -> int:
        """Seed the index from driver profiles that are currently on duty."""
        from drivers.models import DriverProfile

        loaded = 0
        profiles = DriverProfile.objects.filter(status__in=[STATE_AVAILABLE, STATE_BUSY])
        for profile in profiles:
            self.register(profile.user_id, profile.vehicle_class, profile.is_approved)
            if profile.has_location:
                self.update_location(
                    profile.user_id,
                    float(profile.current_latitude),
                    float(profile.current_longitude),
                    profile.last_location_update,
                )
            self.set_state(profile.user_id, profile.status)
            loaded += 1
        logger.info("driver index loaded drivers=%s backend=%s", loaded, type(self).__name__)
        return loaded


# ---------------------- Redis GEO index ----------------------

class RedisDriverIndex(DriverIndex):
    """
    DriverIndex stored in Redis: positions in a GEO set, the rest in a hash per driver.

    Monotonic location updates and state compare-and-set use WATCH/MULTI so
    they hold across processes, not only across threads.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, result_cap: int = 50):
        super().__init__(result_cap=result_cap)
        self._redis = redis_client or get_redis_client()
        self._config = REDIS_GEO_CONFIG

    def _meta_key(self, driver_id: int) -> str:
        return f"{self._config['DRIVER_META_PREFIX']}{driver_id}"

    @staticmethod
    def _entry_from_meta(driver_id: int, meta: Dict[str, str]) -> Optional[DriverEntry]:
        if not meta:
            return None
        ts = meta.get("ts")
        lat = meta.get("latitude")
        lon = meta.get("longitude")
        return DriverEntry(
            driver_id=driver_id,
            vehicle_class=meta.get("vehicle_class", ""),
            approved=meta.get("approved") == "1",
            state=meta.get("state", STATE_OFFLINE),
            latitude=float(lat) if lat else None,
            longitude=float(lon) if lon else None,
            location_ts=datetime.fromtimestamp(float(ts), tz=dt_timezone.utc) if ts else None,
        )

    @staticmethod
    def _meta_from_entry(entry: DriverEntry) -> Dict[str, str]:
        return {
            "vehicle_class": entry.vehicle_class,
            "approved": "1" if entry.approved else "0",
            "state": entry.state,
            "latitude": "" if entry.latitude is None else str(entry.latitude),
            "longitude": "" if entry.longitude is None else str(entry.longitude),
            "ts": "" if entry.location_ts is None else str(entry.location_ts.timestamp()),
        }

    def _get_entry(self, driver_id: int) -> Optional[DriverEntry]:
        return self._entry_from_meta(driver_id, self._redis.hgetall(self._meta_key(driver_id)))

    def _write(self, pipe, entry: DriverEntry) -> None:
        pipe.hset(self._meta_key(entry.driver_id), mapping=self._meta_from_entry(entry))
        pipe.sadd(self._config["DRIVER_IDS_KEY"], str(entry.driver_id))
        if entry.has_location:
            pipe.geoadd(self._config["DRIVERS_GEO_KEY"], (entry.longitude, entry.latitude, str(entry.driver_id)))

    def _put_entry(self, entry: DriverEntry) -> None:
        pipe = self._redis.pipeline()
        self._write(pipe, entry)
        pipe.execute()

    def _delete_entry(self, driver_id: int) -> None:
        pipe = self._redis.pipeline()
        pipe.zrem(self._config["DRIVERS_GEO_KEY"], str(driver_id))
        pipe.delete(self._meta_key(driver_id))
        pipe.srem(self._config["DRIVER_IDS_KEY"], str(driver_id))
        pipe.execute()

    def _iter_candidates(self, lat: float, lon: float, radius_km: float) -> Iterable[DriverEntry]:
        members = self._redis.geosearch(
            self._config["DRIVERS_GEO_KEY"],
            longitude=lon,
            latitude=lat,
            radius=radius_km,
            unit="km",
            sort="ASC",
        )
        if not members:
            return []
        pipe = self._redis.pipeline()
        for member in members:
            pipe.hgetall(self._meta_key(member))
        metas = pipe.execute()
        entries = []
        for member, meta in zip(members, metas):
            entry = self._entry_from_meta(int(member), meta)
            if entry is not None:
                entries.append(entry)
        return entries

    def _watched_update(self, driver_id: int, mutate) -> bool:
        """
        Apply ``mutate(current) -> new entry or None`` atomically across processes.

        Returns False when ``mutate`` declines the change.
        """
        meta_key = self._meta_key(driver_id)
        with self._redis.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(meta_key)
                    current = self._entry_from_meta(driver_id, pipe.hgetall(meta_key))
                    new_entry = mutate(current)
                    if new_entry is None:
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    self._write(pipe, new_entry)
                    pipe.execute()
                    return True
                except redis.WatchError:
                    continue

    def update_location(self, driver_id: int, lat: float, lon: float, ts: Optional[datetime] = None) -> bool:
        driver_id = int(driver_id)
        ts = ts or timezone.now()

        def mutate(current):
            current = current or DriverEntry(driver_id=driver_id)
            if current.location_ts is not None and ts < current.location_ts:
                return None
            return replace(current, latitude=float(lat), longitude=float(lon), location_ts=ts)

        with self.lock_for(driver_id):
            return self._watched_update(driver_id, mutate)

    def compare_and_set_state(self, driver_id: int, expected: str, new: str) -> bool:
        if new not in VALID_STATES:
            raise ValueError(f"Unknown driver state: {new}")
        driver_id = int(driver_id)

        def mutate(current):
            if current is None or current.state != expected:
                return None
            return replace(current, state=new)

        with self.lock_for(driver_id):
            return self._watched_update(driver_id, mutate)

    def clear(self) -> None:
        ids = self._redis.smembers(self._config["DRIVER_IDS_KEY"])
        pipe = self._redis.pipeline()
        for driver_id in ids:
            pipe.delete(self._meta_key(driver_id))
        pipe.delete(self._config["DRIVERS_GEO_KEY"], self._config["DRIVER_IDS_KEY"])
        pipe.execute()


# ---------------------- Singleton ----------------------

_index_instance: Optional[DriverIndex] = None
_index_lock = threading.Lock()


def get_driver_index() -> DriverIndex:
    """
    Get the process-wide DriverIndex, creating and seeding it on first use.

    Redis-backed when REDIS_URL is set, in-process otherwise.
    """
    global _index_instance
    with _index_lock:
        if _index_instance is None:
            cap = settings.DISPATCH["INDEX_RESULT_CAP"]
            if getattr(settings, "REDIS_URL", None):
                index = RedisDriverIndex(result_cap=cap)
            else:
                index = DriverIndex(result_cap=cap)
            index.load_from_database()
            _index_instance = index
        return _index_instance


def reset_driver_index() -> None:
    """Drop the process-wide index; the next get_driver_index() call reseeds it."""
    global _index_instance
    with _index_lock:
        _index_instance = None
