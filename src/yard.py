# yard.py
import copy
import logging
import random
import sqlite3
from datetime import date, datetime
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "zones": ("A", "B", "C"),
    "rows_per_zone": 4,
    "cols_per_zone": 6,
    "stack_limit": 2,  # max containers per slot
}

KEYS = {
    "containers": "yard.containers.v1",  # {id: container}
    "inbound": "yard.inbound.v1",  # [id], newest first
    "layout": "yard.layout.v1",  # {slot_id: [id, ...]}, bottom first
    "baseline": "yard.prevSig.v1",  # {slot_id: "id1|id2"}
}

SIGNATURE_SEPARATOR = "|"


def now_iso():
    return datetime.now().isoformat(timespec="seconds")


# ------------------- Errors -------------------
class YardError(Exception):
    """Base class for recoverable engine errors."""


class SlotFull(YardError):
    def __init__(self, slot_id, stack_limit):
        super().__init__(f"Slot {slot_id} is full (stack limit {stack_limit}).")
        self.slot_id = slot_id
        self.stack_limit = stack_limit


class UnknownContainer(YardError):
    def __init__(self, container_id):
        super().__init__(f"Unknown container {container_id}.")
        self.container_id = container_id


class UnknownSlot(YardError):
    def __init__(self, slot_id):
        super().__init__(f"Unknown slot {slot_id}.")
        self.slot_id = slot_id


class ContainerNotInSlot(YardError):
    def __init__(self, container_id, slot_id):
        super().__init__(f"Container {container_id} is not in slot {slot_id}.")
        self.container_id = container_id
        self.slot_id = slot_id


class InvalidRecord(YardError):
    def __init__(self, field, value):
        super().__init__(f"Field {field!r} has unsupported value {value!r}.")
        self.field = field
        self.value = value


class InvalidIndex(YardError):
    def __init__(self, slot_id, from_index, to_index, size):
        super().__init__(
            f"Cannot move position {from_index} to {to_index} in slot {slot_id} "
            f"holding {size} container(s)."
        )
        self.slot_id = slot_id
        self.from_index = from_index
        self.to_index = to_index
        self.size = size


# ------------------- Grid topology -------------------
def build_slot_id(zone, row, col):
    # 1-indexed for human readability
    return f"{zone}-R{row:02d}-C{col:02d}"


def parse_slot_id(slot_id):
    """Split "A-R01-C02" into ("A", 1, 2)."""
    try:
        zone, row_part, col_part = str(slot_id).rsplit("-", 2)
        if not (zone and row_part.startswith("R") and col_part.startswith("C")):
            raise ValueError(slot_id)
        return zone, int(row_part[1:]), int(col_part[1:])
    except ValueError:
        raise UnknownSlot(slot_id) from None


def enumerate_slots(zones, rows_per_zone, cols_per_zone):
    """All slot ids in canonical scan order: zone, then row, then column."""
    return [
        build_slot_id(zone, r, c)
        for zone in zones
        for r in range(1, rows_per_zone + 1)
        for c in range(1, cols_per_zone + 1)
    ]


def slot_signature(stack):
    # Order matters: any reorder changes the signature
    return SIGNATURE_SEPARATOR.join(stack or [])


def compute_changed_slots(layout, baseline):
    changed = set()
    for slot_id, stack in layout.items():
        if slot_signature(stack) != (baseline or {}).get(slot_id, ""):
            changed.add(slot_id)
    # Slots that disappeared from the topology count as changed too
    for slot_id in baseline or {}:
        if slot_id not in layout:
            changed.add(slot_id)
    return changed


def clean_record(record):
    """Feed record reduced to JSON-safe scalars; dates become ISO strings."""
    fields = {}
    for key, value in dict(record).items():
        if key in ("id", "status", "slotId"):
            continue
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        elif not (value is None or isinstance(value, (str, int, float, bool))):
            raise InvalidRecord(key, value)
        fields[key] = value
    return fields


def random_id(prefix="CONT", rng=random):
    return f"{prefix}-{rng.randint(100000, 999999)}"


# ------------------- Container -------------------
class Size(str, Enum):
    FT20 = "20FT"
    FT40 = "40FT"


class ContainerType(str, Enum):
    DRY = "DRY"
    REEFER = "REEFER"
    OPEN = "OPEN"


class Priority(str, Enum):
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class Status(str, Enum):
    INBOUND = "INBOUND"
    IN_YARD = "IN_YARD"


def _enum_or_default(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return next(iter(enum_cls))


class Container:
    def __init__(self, container_id, size=Size.FT20, container_type=ContainerType.DRY,
                 priority=Priority.NORMAL, status=Status.INBOUND, slot_id=None,
                 created_at=None, owner_name="", company_name="", material="",
                 move_in_date=None, move_out_date=None):
        self.id = container_id
        self.size = _enum_or_default(Size, size)
        self.container_type = _enum_or_default(ContainerType, container_type)
        self.priority = _enum_or_default(Priority, priority)
        self.status = _enum_or_default(Status, status)
        self.slot_id = slot_id  # set iff status is IN_YARD
        self.created_at = created_at or now_iso()
        self.placed_at = None
        self.moved_at = None
        self.updated_at = None
        self.owner_name = owner_name
        self.company_name = company_name
        self.material = material
        self.move_in_date = move_in_date
        self.move_out_date = move_out_date

    def mark_in_yard(self, slot_id, stamp_field):
        self.status = Status.IN_YARD
        self.slot_id = slot_id
        setattr(self, stamp_field, now_iso())

    def mark_inbound(self):
        self.status = Status.INBOUND
        self.slot_id = None
        self.updated_at = now_iso()

    def to_dict(self):
        return {
            "id": self.id,
            "size": self.size.value,
            "type": self.container_type.value,
            "priority": self.priority.value,
            "status": self.status.value,
            "slotId": self.slot_id,
            "createdAt": self.created_at,
            "placedAt": self.placed_at,
            "movedAt": self.moved_at,
            "updatedAt": self.updated_at,
            "ownerName": self.owner_name,
            "companyName": self.company_name,
            "material": self.material,
            "moveInDate": self.move_in_date,
            "moveOutDate": self.move_out_date,
        }

    @classmethod
    def from_dict(cls, d):
        c = cls(
            d["id"],
            size=d.get("size"),
            container_type=d.get("type"),
            priority=d.get("priority"),
            status=d.get("status"),
            slot_id=d.get("slotId"),
            created_at=d.get("createdAt"),
            owner_name=d.get("ownerName", ""),
            company_name=d.get("companyName", ""),
            material=d.get("material", ""),
            move_in_date=d.get("moveInDate"),
            move_out_date=d.get("moveOutDate"),
        )
        c.placed_at = d.get("placedAt")
        c.moved_at = d.get("movedAt")
        c.updated_at = d.get("updatedAt")
        return c

    def __eq__(self, other):
        return isinstance(other, Container) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"Container({self.id!r}, status={self.status.value}, slot={self.slot_id!r})"


# ------------------- Engine -------------------
class Yard:
    def __init__(self, zones=DEFAULT_CONFIG["zones"], rows_per_zone=DEFAULT_CONFIG["rows_per_zone"],
                 cols_per_zone=DEFAULT_CONFIG["cols_per_zone"],
                 stack_limit=DEFAULT_CONFIG["stack_limit"], store=None, rng=None):
        self.zones = tuple(zones)
        self.rows_per_zone = rows_per_zone
        self.cols_per_zone = cols_per_zone
        self.stack_limit = stack_limit
        self.store = store
        self.rng = rng or random.Random()
        self.slots = enumerate_slots(self.zones, rows_per_zone, cols_per_zone)
        self._slot_set = set(self.slots)

        self._containers = {}
        self._inbound = []
        self._layout = {s: [] for s in self.slots}
        self._baseline = {}
        if store is not None:
            self._load()

    # ---- persistence ----
    def _load(self):
        raw_containers = self._read(KEYS["containers"], dict)
        raw_inbound = self._read(KEYS["inbound"], list)
        raw_layout = self._read(KEYS["layout"], dict)
        raw_baseline = self._read(KEYS["baseline"], dict)

        containers = {}
        for cid, record in raw_containers.items():
            try:
                containers[cid] = Container.from_dict({**record, "id": cid})
            except (TypeError, KeyError):
                logger.warning("Dropping malformed container record %r", cid)

        # Every slot in the topology must exist; anything else is discarded
        layout = {}
        for s in self.slots:
            stack = raw_layout.get(s)
            layout[s] = [cid for cid in stack if isinstance(cid, str)] if isinstance(stack, list) else []
        for s in raw_layout:
            if s not in self._slot_set and raw_layout[s]:
                logger.warning("Slot %s is not part of the grid; its containers return to inbound", s)

        inbound = [cid for cid in raw_inbound if isinstance(cid, str)]
        baseline = {s: sig for s, sig in raw_baseline.items() if isinstance(sig, str)}

        self._containers, self._inbound, self._layout = self._reconcile(containers, inbound, layout)
        self._baseline = baseline
        for problem in self.check_invariants():
            logger.warning("Invariant violated after load: %s", problem)
        logger.info(
            "Loaded yard: %d containers, %d inbound, %d in yard",
            len(self._containers), len(self._inbound), self.in_yard_count(),
        )

    def _read(self, key, expected_type):
        value = self.store.get(key, expected_type())
        if not isinstance(value, expected_type):
            logger.warning("Ignoring stored %s: expected %s", key, expected_type.__name__)
            return expected_type()
        return value

    def _reconcile(self, containers, inbound, layout):
        """Put every known container in exactly one place, within capacity."""
        seen = set()
        for s in self.slots:
            kept = []
            for cid in layout[s]:
                if cid not in containers or cid in seen:
                    logger.warning("Removing stray id %s from slot %s", cid, s)
                    continue
                if len(kept) >= self.stack_limit:
                    logger.warning("Slot %s over capacity; %s returns to inbound", s, cid)
                    continue
                kept.append(cid)
                seen.add(cid)
            layout[s] = kept
            for cid in kept:
                c = containers[cid]
                if c.status != Status.IN_YARD or c.slot_id != s:
                    c.status, c.slot_id = Status.IN_YARD, s

        queue = []
        for cid in inbound:
            if cid in containers and cid not in seen:
                queue.append(cid)
                seen.add(cid)
        for cid, c in containers.items():
            if cid not in seen:
                logger.warning("Container %s had no location; returning it to inbound", cid)
                queue.insert(0, cid)
                seen.add(cid)
        for cid in queue:
            c = containers[cid]
            c.status, c.slot_id = Status.INBOUND, None
        return containers, queue, layout

    def _persist(self, *names):
        """Best effort: a failed write is logged, the in-memory commit stands."""
        if self.store is None:
            return
        values = {
            "containers": lambda: {cid: c.to_dict() for cid, c in self._containers.items()},
            "inbound": lambda: list(self._inbound),
            "layout": lambda: {s: list(st) for s, st in self._layout.items()},
            "baseline": lambda: dict(self._baseline),
        }
        for name in names or tuple(KEYS):
            try:
                self.store.put(KEYS[name], values[name]())
            except (sqlite3.Error, OSError, TypeError, ValueError):
                logger.exception("Failed to persist %s", KEYS[name])

    def _log(self, container_id, stage, slot_id=""):
        if self.store is None:
            return
        try:
            self.store.log_movement(container_id, stage, slot_id or "")
        except (sqlite3.Error, OSError, TypeError, ValueError):
            logger.exception("Failed to log movement of %s", container_id)

    def _working_copy(self):
        return (copy.deepcopy(self._containers), list(self._inbound),
                {s: list(st) for s, st in self._layout.items()})

    def _commit(self, containers, inbound, layout):
        self._containers, self._inbound, self._layout = containers, inbound, layout
        self._persist("containers", "inbound", "layout")

    def _require_slot(self, slot_id):
        if slot_id not in self._slot_set:
            raise UnknownSlot(slot_id)

    # ---- intake ----
    def ingest(self, records):
        """Register new containers at the head of the inbound queue. Returns their ids."""
        # validate everything before anything is committed
        cleaned = [clean_record(record) for record in records]
        containers, inbound, layout = self._working_copy()
        new_ids = []
        for fields in cleaned:
            cid = random_id("CONT", self.rng)
            while cid in containers:
                cid = random_id("CONT", self.rng)
            containers[cid] = Container.from_dict({**fields, "id": cid, "status": Status.INBOUND.value})
            inbound.insert(0, cid)  # newest first
            new_ids.append(cid)
        if new_ids:
            self._commit(containers, inbound, layout)
            for cid in new_ids:
                self._log(cid, "Inbound")
            logger.info("Ingested %d container(s)", len(new_ids))
        return new_ids

    # ---- placement ----
    def first_available_slot(self, layout=None):
        """Return the first slot in scan order with spare capacity, or None if full."""
        layout = self._layout if layout is None else layout
        for s in self.slots:
            if len(layout[s]) < self.stack_limit:
                return s
        return None

    def auto_place(self, max_count=10):
        """Place up to max_count of the oldest inbound containers first-fit. Returns the count placed."""
        containers, inbound, layout = self._working_copy()
        placed = []
        while inbound and len(placed) < max_count:
            slot_id = self.first_available_slot(layout)
            if slot_id is None:
                break
            cid = inbound.pop()  # oldest arrival sits at the tail
            layout[slot_id].append(cid)
            containers[cid].mark_in_yard(slot_id, "placed_at")
            placed.append((cid, slot_id))
        if placed:
            self._commit(containers, inbound, layout)
            for cid, slot_id in placed:
                self._log(cid, "Placed", slot_id)
            logger.info("Auto-placed %d container(s), %d still inbound", len(placed), len(inbound))
        return len(placed)

    def move(self, container_id, target_slot_id):
        """Move a container (inbound or in yard) to the top of target_slot_id."""
        self._require_slot(target_slot_id)
        if container_id not in self._containers:
            raise UnknownContainer(container_id)

        containers, inbound, layout = self._working_copy()
        source = None
        if container_id in inbound:
            inbound.remove(container_id)
        for s, stack in layout.items():
            if container_id in stack:
                stack.remove(container_id)
                source = s
        if len(layout[target_slot_id]) >= self.stack_limit:
            logger.info("Rejected move of %s: slot %s is full", container_id, target_slot_id)
            raise SlotFull(target_slot_id, self.stack_limit)

        layout[target_slot_id].append(container_id)
        containers[container_id].mark_in_yard(target_slot_id, "moved_at")
        self._commit(containers, inbound, layout)
        self._log(container_id, "Moved", target_slot_id)
        logger.info("Moved %s from %s to %s", container_id, source or "inbound", target_slot_id)

    def reorder(self, slot_id, from_index, to_index):
        """Move the container at from_index to to_index inside one slot."""
        self._require_slot(slot_id)
        stack = list(self._layout[slot_id])
        n = len(stack)
        if not (0 <= from_index < n and 0 <= to_index < n):
            raise InvalidIndex(slot_id, from_index, to_index, n)
        if from_index == to_index:
            return
        item = stack.pop(from_index)
        stack.insert(to_index, item)
        containers, inbound, layout = self._working_copy()
        layout[slot_id] = stack
        self._commit(containers, inbound, layout)
        logger.info("Reordered slot %s: %d -> %d", slot_id, from_index, to_index)

    def evict(self, slot_id, container_id):
        """Take a container out of its slot and put it back at the head of inbound."""
        self._require_slot(slot_id)
        if container_id not in self._containers:
            raise UnknownContainer(container_id)
        if container_id not in self._layout[slot_id]:
            raise ContainerNotInSlot(container_id, slot_id)
        containers, inbound, layout = self._working_copy()
        layout[slot_id].remove(container_id)
        inbound.insert(0, container_id)
        containers[container_id].mark_inbound()
        self._commit(containers, inbound, layout)
        self._log(container_id, "Evicted", slot_id)
        logger.info("Evicted %s from %s back to inbound", container_id, slot_id)

    # ---- change detection ----
    def changed_slots(self):
        return compute_changed_slots(self._layout, self._baseline)

    def acknowledge(self):
        """Accept the current arrangement as the new baseline."""
        self._baseline = {s: slot_signature(self._layout[s]) for s in self.slots}
        self._persist("baseline")
        logger.info("Acknowledged layout of %d slots", len(self._baseline))

    # ---- housekeeping ----
    def reset(self):
        self._containers = {}
        self._inbound = []
        self._layout = {s: [] for s in self.slots}
        self._baseline = {}
        if self.store is not None:
            for key in KEYS.values():
                try:
                    self.store.delete(key)
                except (sqlite3.Error, OSError):
                    logger.exception("Failed to delete %s", key)
        logger.info("Yard reset")

    def is_empty(self):
        return not self._containers and not self._inbound and not any(self._layout.values())

    def seed(self, records):
        """Fill an empty yard with demo data; returns the number placed (0 if data existed)."""
        if not self.is_empty():
            return 0
        ids = self.ingest(records)
        return self.auto_place(len(ids))

    # ---- read-only projections ----
    @property
    def containers(self):
        return copy.deepcopy(self._containers)

    @property
    def inbound(self):
        return list(self._inbound)

    @property
    def layout(self):
        return {s: list(st) for s, st in self._layout.items()}

    @property
    def baseline(self):
        return dict(self._baseline)

    def get(self, container_id):
        if container_id not in self._containers:
            raise UnknownContainer(container_id)
        return copy.deepcopy(self._containers[container_id])

    def stack(self, slot_id):
        self._require_slot(slot_id)
        return list(self._layout[slot_id])

    def locate(self, container_id):
        if container_id not in self._containers:
            raise UnknownContainer(container_id)
        for s, stack in self._layout.items():
            if container_id in stack:
                return s
        return None

    def capacity(self):
        return len(self.slots) * self.stack_limit

    def in_yard_count(self):
        return sum(len(st) for st in self._layout.values())

    def kpis(self):
        in_yard = self.in_yard_count()
        capacity = self.capacity()
        return {
            "inbound": len(self._inbound),
            "in_yard": in_yard,
            "capacity": capacity,
            # half rounds up
            "utilization_pct": int(in_yard * 100 / capacity + 0.5) if capacity else 0,
            "changed": len(self.changed_slots()),
        }

    def zone_availability(self):
        result = []
        for zone in self.zones:
            zone_slots = [s for s in self.slots if s.startswith(f"{zone}-")]
            used = sum(len(self._layout[s]) for s in zone_slots)
            total = len(zone_slots) * self.stack_limit
            result.append({"zone": zone, "remaining": total - used, "total": total})
        return result

    def bay_slots(self, zone, row):
        prefix = f"{zone}-R{row:02d}-"
        return [s for s in self.slots if s.startswith(prefix)]

    def check_invariants(self):
        problems = []
        where = {}
        for cid in self._inbound:
            where.setdefault(cid, []).append("inbound")
        for s, stack in self._layout.items():
            if len(stack) > self.stack_limit:
                problems.append(f"{s} holds {len(stack)} > {self.stack_limit}")
            for cid in stack:
                where.setdefault(cid, []).append(s)
        for cid, c in self._containers.items():
            places = where.get(cid, [])
            if len(places) != 1:
                problems.append(f"{cid} found in {places or 'nowhere'}")
                continue
            expected = None if places[0] == "inbound" else places[0]
            if c.slot_id != expected:
                problems.append(f"{cid} slot reference {c.slot_id!r} != {expected!r}")
            if (c.status == Status.IN_YARD) != (expected is not None):
                problems.append(f"{cid} status {c.status.value} does not match location")
        for cid in where:
            if cid not in self._containers:
                problems.append(f"{cid} has no container record")
        return problems
