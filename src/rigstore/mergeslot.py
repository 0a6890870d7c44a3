"""Merge slot: a KV-backed mutex that serialises merge-conflict resolution.

One slot per rig, stored at key "lock" of the "merge-slot" table. acquire()
is a read-then-write, not an atomic compare-and-swap; callers are expected
to be serialised by whatever orchestrates them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rigstore.errors import AlreadyExistsError, SlotHeldError, SlotStateError
from rigstore.kv import KVStore, SetMode

if TYPE_CHECKING:
    from pathlib import Path

TABLE = "merge-slot"
LOCK_KEY = "lock"

STATUS_OPEN = "open"
STATUS_HELD = "held"


@dataclass
class MergeSlot:
    status: str = STATUS_OPEN
    holder: str = ""
    waiters: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> MergeSlot:
        return cls(
            status=d.get("status", STATUS_OPEN),
            holder=d.get("holder", ""),
            waiters=list(d.get("waiters", [])),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"status": self.status}
        if self.holder:
            d["holder"] = self.holder
        if self.waiters:
            d["waiters"] = list(self.waiters)
        return d


def slot_store(storage_dir: Path | str) -> KVStore:
    return KVStore(storage_dir, TABLE)


def create_slot(store: KVStore) -> None:
    """Create an open slot. A no-op if the slot already exists."""
    try:
        store.set(LOCK_KEY, MergeSlot().to_dict(), exists=SetMode.FAIL_IF_EXISTS)
    except AlreadyExistsError:
        pass


def check_slot(store: KVStore) -> MergeSlot:
    """Current slot state. Raises NotFoundError if it was never created."""
    return MergeSlot.from_dict(store.get(LOCK_KEY))


def acquire(store: KVStore, requester: str, wait: bool = False) -> MergeSlot:
    """Take the slot for requester.

    If it is held, raise SlotHeldError naming the holder; with wait, first
    append requester to the waiters (once).
    """
    slot = check_slot(store)
    if slot.status == STATUS_OPEN:
        slot.status = STATUS_HELD
        slot.holder = requester
        store.update(LOCK_KEY, slot.to_dict())
        return slot

    if wait and requester not in slot.waiters:
        slot.waiters.append(requester)
        store.update(LOCK_KEY, slot.to_dict())
    raise SlotHeldError(slot.holder, slot)


def release(store: KVStore, holder_check: str = "") -> tuple[MergeSlot, str]:
    """Open the slot again and return (slot, first waiter or "").

    The first waiter stays queued; notifying it is the caller's job.
    """
    slot = check_slot(store)
    if slot.status != STATUS_HELD:
        msg = f"merge slot is not held (status: {slot.status})"
        raise SlotStateError(msg)
    if holder_check and slot.holder != holder_check:
        msg = f"holder mismatch: slot held by {slot.holder!r}, not {holder_check!r}"
        raise SlotStateError(msg)

    first_waiter = slot.waiters[0] if slot.waiters else ""
    slot.status = STATUS_OPEN
    slot.holder = ""
    store.update(LOCK_KEY, slot.to_dict())
    return slot, first_waiter
