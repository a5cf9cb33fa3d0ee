"""Credential Pool: rotatable API keys with per-key usage and cooldown.

Selection rules:
  1. the current slot, if it is not cooling down
  2. otherwise the first non-cooling slot in order, which becomes current
  3. if every slot is cooling, the one whose cooldown ends soonest (lowest
     index on ties), returned without becoming current so the caller can wait

A rate limit puts the affected slot on cooldown and moves "current" one step
round-robin. The next slot may itself be cooling; ``select_usable`` re-checks.

Mutations are serialized through one asyncio.Lock. Usage counters and
cooldowns are mirrored to the credential store keyed by ``hash_credential``;
a failing store is logged and never blocks selection.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable

from synthgate.core.metrics import CREDENTIALS_AVAILABLE
from synthgate.core.security import hash_credential
from synthgate.gateway.types import AddCredentialResult, CredentialSlot, PoolStatus

logger = logging.getLogger(__name__)

Listener = Callable[[PoolStatus], None]


class CredentialPool:
    def __init__(
        self,
        credentials: Iterable[str] = (),
        *,
        default_cooldown: float = 60.0,
        usage_threshold: int = 100,
        prefix: str = "AIza",
        min_length: int = 20,
        store=None,
        clock: Callable[[], float] = time.time,
    ):
        self.default_cooldown = default_cooldown
        self.usage_threshold = max(usage_threshold, 1)
        self.prefix = prefix
        self.min_length = min_length
        self.store = store
        self._clock = clock

        self._slots: list[CredentialSlot] = []
        self._current = 0
        self._next_id = 1
        self._seed_hashes: set[str] = set()
        self._listeners: list[Listener] = []
        self._lock = asyncio.Lock()

        for position, secret in enumerate(credentials):
            secret = secret.strip()
            rejected = self._check(secret)
            if rejected is not None:
                logger.warning("Ignoring seed credential #%d: %s", position, rejected.value)
                continue
            slot = self._append(secret)
            self._seed_hashes.add(slot.key_hash)
        self._mark_active()

    def __len__(self) -> int:
        return len(self._slots)

    # --- Lifecycle ---

    async def initialize(self) -> None:
        """Load runtime-added secrets and persisted usage from the store."""
        if self.store is None:
            return
        try:
            secrets = await self.store.load_secrets()
            usage = await self.store.load_usage()
        except Exception:
            logger.warning("Could not load credential state, starting fresh", exc_info=True)
            return

        async with self._lock:
            for secret in secrets:
                if self._check(secret) is None:
                    self._append(secret)
            for slot in self._slots:
                state = usage.get(slot.key_hash)
                if not state:
                    continue
                slot.usage_count = state.get("usage_count", 0)
                slot.last_used_at = state.get("last_used_at", 0.0)
                slot.cooldown_until = state.get("cooldown_until")
            self._mark_active()

        logger.info("Credential pool loaded: %d credentials (%d restored)", len(self._slots), len(secrets))
        self._notify()

    # --- Selection ---

    async def select_usable(self) -> CredentialSlot | None:
        """Return a slot to call with, or ``None`` when the pool is empty.

        The returned slot may still be cooling down when every slot is; check
        ``slot.is_cooling(now)`` before calling.
        """
        async with self._lock:
            if not self._slots:
                return None
            now = self._clock()

            current = self._slots[self._current]
            if not current.is_cooling(now):
                return current

            for index, slot in enumerate(self._slots):
                if not slot.is_cooling(now):
                    self._current = index
                    self._mark_active()
                    selected = slot
                    break
            else:
                # min() keeps the first of equal keys, i.e. the lowest index
                return min(self._slots, key=lambda s: s.cooldown_until or 0.0)

        logger.info("Rotated to credential %s", selected.slot_id)
        self._notify()
        return selected

    def has_usable(self, exclude: str | None = None) -> bool:
        """True if some slot other than ``exclude`` is not cooling right now."""
        now = self._clock()
        return any(slot.slot_id != exclude and not slot.is_cooling(now) for slot in self._slots)

    def get(self, slot_id: str) -> CredentialSlot | None:
        for slot in self._slots:
            if slot.slot_id == slot_id:
                return slot
        return None

    # --- Outcomes ---

    async def record_success(self, slot_id: str | None = None) -> None:
        """Count one successful call against ``slot_id`` (default: current slot)."""
        async with self._lock:
            slot = self._resolve(slot_id)
            if slot is None:
                return
            now = self._clock()
            slot.usage_count += 1
            slot.last_used_at = now
            if slot.cooldown_until is not None and slot.cooldown_until <= now:
                slot.cooldown_until = None
            snapshot = {slot.key_hash: _usage_row(slot)}

        await self._persist_usage(snapshot)
        self._notify()

    async def record_rate_limit(self, slot_id: str | None = None, cooldown: float | None = None) -> None:
        """Put a slot on cooldown and advance "current" if that slot was current."""
        async with self._lock:
            slot = self._resolve(slot_id)
            if slot is None:
                return
            duration = cooldown if cooldown and cooldown > 0 else self.default_cooldown
            slot.cooldown_until = self._clock() + duration

            if self._slots[self._current] is slot:
                self._current = (self._current + 1) % len(self._slots)
                self._mark_active()
            snapshot = {slot.key_hash: _usage_row(slot)}

        logger.warning("Credential %s rate limited, cooling down for %.1fs", slot.slot_id, duration)
        await self._persist_usage(snapshot)
        self._notify()

    async def reset_usage(self) -> None:
        """Zero every usage counter and clear every cooldown."""
        async with self._lock:
            for slot in self._slots:
                slot.usage_count = 0
                slot.last_used_at = 0.0
                slot.cooldown_until = None
            snapshot = {slot.key_hash: _usage_row(slot) for slot in self._slots}

        logger.info("Credential usage reset for %d credentials", len(snapshot))
        await self._persist_usage(snapshot)
        self._notify()

    # --- Membership ---

    async def add_credential(self, secret: str) -> AddCredentialResult:
        secret = (secret or "").strip()
        async with self._lock:
            rejected = self._check(secret)
            if rejected is not None:
                return rejected
            slot = self._append(secret)
            self._mark_active()
            runtime = self._runtime_secrets()

        logger.info("Added credential %s", slot.slot_id)
        await self._persist_secrets(runtime)
        self._notify()
        return AddCredentialResult.SUCCESS

    async def remove_credential(self, slot_id: str) -> bool:
        async with self._lock:
            index = next((i for i, s in enumerate(self._slots) if s.slot_id == slot_id), None)
            if index is None:
                return False
            removed = self._slots.pop(index)
            if index < self._current:
                self._current -= 1
            if self._current >= len(self._slots):
                self._current = 0
            self._mark_active()
            runtime = self._runtime_secrets()

        logger.info("Removed credential %s", removed.slot_id)
        await self._persist_secrets(runtime)
        if self.store is not None:
            try:
                await self.store.delete_usage(removed.key_hash)
            except Exception:
                logger.warning("Failed to delete usage for %s", removed.slot_id, exc_info=True)
        self._notify()
        return True

    def list_credentials(self) -> list[dict]:
        now = self._clock()
        return [
            {
                "id": slot.slot_id,
                "hint": f"{slot.secret[:4]}...{slot.secret[-4:]}",
                "active": slot.is_active,
                "cooling": slot.is_cooling(now),
                "cooldown_until": slot.cooldown_until if slot.is_cooling(now) else None,
                "usage_count": slot.usage_count,
                "last_used_at": slot.last_used_at or None,
            }
            for slot in self._slots
        ]

    # --- Status ---

    def status(self) -> PoolStatus:
        now = self._clock()
        total = len(self._slots)
        cooling = [slot.cooldown_until for slot in self._slots if slot.is_cooling(now)]
        available = total - len(cooling)
        used = sum(slot.usage_count for slot in self._slots)
        return PoolStatus(
            current_slot_id=self._slots[self._current].slot_id if self._slots else "",
            total=total,
            available=available,
            usage_ratio=min(1.0, used / (self.usage_threshold * total)) if total else 0.0,
            earliest_cooldown_expiry=min(cooling) if cooling else None,
            exhausted=available == 0,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a status listener. It receives the current status right away."""
        self._listeners.append(listener)
        self._call(listener, self.status())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- Internals ---

    def _check(self, secret: str) -> AddCredentialResult | None:
        if (
            len(secret) < self.min_length
            or not secret.startswith(self.prefix)
            or any(ch.isspace() for ch in secret)
        ):
            return AddCredentialResult.INVALID_FORMAT
        if any(slot.secret == secret for slot in self._slots):
            return AddCredentialResult.DUPLICATE
        return None

    def _append(self, secret: str) -> CredentialSlot:
        slot = CredentialSlot(
            slot_id=f"key_{self._next_id}",
            secret=secret,
            key_hash=hash_credential(secret),
        )
        self._next_id += 1
        self._slots.append(slot)
        return slot

    def _resolve(self, slot_id: str | None) -> CredentialSlot | None:
        if slot_id is not None:
            return self.get(slot_id)
        return self._slots[self._current] if self._slots else None

    def _mark_active(self) -> None:
        for index, slot in enumerate(self._slots):
            slot.is_active = index == self._current

    def _runtime_secrets(self) -> list[str]:
        return [slot.secret for slot in self._slots if slot.key_hash not in self._seed_hashes]

    async def _persist_usage(self, snapshot: dict[str, dict]) -> None:
        if self.store is None or not snapshot:
            return
        try:
            await self.store.save_usage(snapshot)
        except Exception:
            logger.warning("Failed to persist credential usage", exc_info=True)

    async def _persist_secrets(self, secrets: list[str]) -> None:
        if self.store is None:
            return
        try:
            await self.store.save_secrets(secrets)
        except Exception:
            logger.warning("Failed to persist credentials", exc_info=True)

    def _notify(self) -> None:
        status = self.status()
        CREDENTIALS_AVAILABLE.set(status.available)
        for listener in list(self._listeners):
            self._call(listener, status)

    @staticmethod
    def _call(listener: Listener, status: PoolStatus) -> None:
        try:
            listener(status)
        except Exception:
            logger.exception("Pool status listener failed")


def _usage_row(slot: CredentialSlot) -> dict:
    return {
        "usage_count": slot.usage_count,
        "last_used_at": slot.last_used_at,
        "cooldown_until": slot.cooldown_until,
    }
