# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Process-wide pool of provider API keys with health tracking.

The pool hands out keys on a round-robin rotation, spaces calls per key,
and tracks each key through ALIVE -> COOLING -> ALIVE and -> DEAD.
All mutation happens under a single asyncio lock; orchestrators never
touch ``Credential`` fields directly.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .errors import AllCredentialsDeadError
from .utils import format_credential_for_display

lib_logger = logging.getLogger("seo_llm_core")


DEFAULT_COOLDOWN_SECONDS = 60.0
DEFAULT_MAX_COOLDOWN_MULTIPLIER = 5
DEFAULT_DAILY_COOLDOWN_SECONDS = 3600.0


class CredentialState(str, Enum):
    """Health state of a single credential."""

    ALIVE = "alive"
    COOLING = "cooling"  # Temporarily unusable until cooldown_until
    DEAD = "dead"  # Permanently unusable (revoked / forbidden)


@dataclass
class Credential:
    """One API key plus its health state and usage counters."""

    index: int
    api_key: str = field(repr=False)
    state: CredentialState = CredentialState.ALIVE
    cooldown_until: float = 0.0
    daily_exhausted: bool = False
    last_used_at: float = 0.0
    call_count: int = 0
    success_count: int = 0
    rate_limit_errors: int = 0
    consecutive_rate_limits: int = 0

    def refresh(self, now: float) -> None:
        """Move an ordinary cooldown back to ALIVE once it has elapsed."""
        if (
            self.state is CredentialState.COOLING
            and not self.daily_exhausted
            and now >= self.cooldown_until
        ):
            self.state = CredentialState.ALIVE
            self.cooldown_until = 0.0

    def cooldown_remaining(self, now: float) -> float:
        if self.state is not CredentialState.COOLING:
            return 0.0
        return max(0.0, self.cooldown_until - now)


@dataclass(frozen=True)
class CredentialHandle:
    """Read-only view of a pooled credential given to orchestrators."""

    index: int
    api_key: str = field(repr=False)

    @property
    def display(self) -> str:
        return f"#{self.index} ({format_credential_for_display(self.api_key)})"


class CredentialPool:
    """
    Round-robin pool of API keys shared by every generation call.

    Rate limiting is per key: each key keeps its own ``last_used_at`` so that
    concurrent calls landing on different keys never wait on each other.
    """

    def __init__(
        self,
        api_keys: Iterable[str],
        min_call_spacing: Optional[float] = None,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        max_cooldown_multiplier: int = DEFAULT_MAX_COOLDOWN_MULTIPLIER,
        daily_cooldown_seconds: float = DEFAULT_DAILY_COOLDOWN_SECONDS,
    ):
        """
        Initialize the pool.

        Args:
            api_keys: Configured keys. Blank entries and duplicates are dropped,
                first occurrence wins.
            min_call_spacing: Minimum seconds between two calls on the same key.
                None derives it from the number of alive keys.
            cooldown_seconds: Base cooldown after an ordinary rate limit.
            max_cooldown_multiplier: Cap for the progressive cooldown multiplier.
            daily_cooldown_seconds: Cooldown recorded for daily quota exhaustion.
        """
        unique_keys = list(
            dict.fromkeys(k.strip() for k in api_keys if k and k.strip())
        )
        if not unique_keys:
            raise ValueError("At least one API key is required to build a CredentialPool.")

        self._credentials: List[Credential] = [
            Credential(index=i, api_key=key) for i, key in enumerate(unique_keys)
        ]
        self._cursor = 0
        self._lock = asyncio.Lock()
        self.min_call_spacing = min_call_spacing
        self.cooldown_seconds = cooldown_seconds
        self.max_cooldown_multiplier = max_cooldown_multiplier
        self.daily_cooldown_seconds = daily_cooldown_seconds

        lib_logger.info(f"CredentialPool initialized with {len(self._credentials)} key(s)")

    # =========================================================================
    # QUERIES
    # =========================================================================

    @property
    def size(self) -> int:
        return len(self._credentials)

    @property
    def alive_count(self) -> int:
        return sum(1 for c in self._credentials if c.state is not CredentialState.DEAD)

    @property
    def all_daily_exhausted(self) -> bool:
        """True when every key is either daily-exhausted or dead."""
        return bool(self._credentials) and all(
            c.daily_exhausted or c.state is CredentialState.DEAD
            for c in self._credentials
        )

    @property
    def call_spacing(self) -> float:
        """Minimum seconds between two calls on the same key."""
        if self.min_call_spacing is not None:
            return self.min_call_spacing
        alive = self.alive_count
        if alive <= 1:
            return 4.5
        if alive <= 3:
            return 2.0
        if alive <= 6:
            return 1.0
        return 0.5

    def state_of(self, index: int) -> Optional[CredentialState]:
        credential = self._get(index)
        if credential is None:
            return None
        credential.refresh(time.time())
        return credential.state

    def rate_limit_wait(self, index: int) -> float:
        """Seconds to wait before this key may be used again."""
        credential = self._get(index)
        if credential is None:
            return 0.0
        elapsed = time.time() - credential.last_used_at
        return max(0.0, self.call_spacing - elapsed)

    def cooldown_wait(self, index: int) -> float:
        """Seconds until a cooling key becomes usable; 0 if it is not cooling."""
        credential = self._get(index)
        if credential is None:
            return 0.0
        now = time.time()
        credential.refresh(now)
        return credential.cooldown_remaining(now)

    def get_stats(self) -> List[Dict[str, Any]]:
        """Per-key statistics for debugging and the stats endpoint."""
        now = time.time()
        stats = []
        for c in self._credentials:
            c.refresh(now)
            stats.append(
                {
                    "index": c.index,
                    "key": format_credential_for_display(c.api_key),
                    "state": c.state.value,
                    "call_count": c.call_count,
                    "success_count": c.success_count,
                    "rate_limit_errors": c.rate_limit_errors,
                    "consecutive_rate_limits": c.consecutive_rate_limits,
                    "is_cooling": c.state is CredentialState.COOLING,
                    "dead": c.state is CredentialState.DEAD,
                    "daily_exhausted": c.daily_exhausted,
                    "cooldown_remaining": round(c.cooldown_remaining(now), 3),
                    "health_score": (
                        round(c.success_count / c.call_count * 100)
                        if c.call_count > 0
                        else 100
                    ),
                }
            )
        return stats

    # =========================================================================
    # ROTATION
    # =========================================================================

    async def next(self) -> CredentialHandle:
        """
        Hand out the next key on the rotation.

        Dead and daily-exhausted keys are skipped. If every remaining key is
        cooling, the one that recovers soonest is returned and the caller
        waits out ``cooldown_wait``.

        Raises:
            AllCredentialsDeadError: No key is alive.
        """
        async with self._lock:
            if self.alive_count == 0:
                raise AllCredentialsDeadError()

            now = time.time()
            total = len(self._credentials)
            for offset in range(total):
                credential = self._credentials[(self._cursor + offset) % total]
                if credential.state is CredentialState.DEAD or credential.daily_exhausted:
                    continue
                credential.refresh(now)
                if credential.state is CredentialState.ALIVE:
                    return self._hand_out(credential)

            candidates = [
                c
                for c in self._credentials
                if c.state is not CredentialState.DEAD and not c.daily_exhausted
            ]
            if not candidates:
                # Every alive key is daily-exhausted; callers check all_daily_exhausted.
                fallback = next(
                    c for c in self._credentials if c.state is not CredentialState.DEAD
                )
                return self._hand_out(fallback)

            soonest = min(candidates, key=lambda c: c.cooldown_until)
            lib_logger.warning(
                f"All {len(candidates)} usable key(s) cooling down. "
                f"Shortest wait: {soonest.cooldown_remaining(now):.1f}s (key #{soonest.index})"
            )
            return self._hand_out(soonest)

    def _hand_out(self, credential: Credential) -> CredentialHandle:
        credential.call_count += 1
        self._cursor = (credential.index + 1) % len(self._credentials)
        return CredentialHandle(index=credential.index, api_key=credential.api_key)

    # =========================================================================
    # STATE TRANSITIONS
    # =========================================================================

    async def mark_used(self, index: int) -> None:
        async with self._lock:
            credential = self._get(index)
            if credential is not None:
                credential.last_used_at = time.time()

    async def reserve_call_slot(self, index: int) -> float:
        """
        Reserve the next call slot on a key and return how long to wait for it.

        Equivalent to ``rate_limit_wait`` followed by ``mark_used`` at the end
        of the wait, done atomically so that two concurrent callers on the
        same key are spaced apart instead of both firing at once.
        """
        async with self._lock:
            credential = self._get(index)
            if credential is None:
                return 0.0
            now = time.time()
            wait = max(0.0, self.call_spacing - (now - credential.last_used_at))
            credential.last_used_at = now + wait
            return wait

    async def mark_success(self, index: int) -> None:
        """
        Record a successful call.

        A cooldown is only cleared once it has elapsed; one recorded by a
        concurrent call on the same key stays in force.
        """
        async with self._lock:
            credential = self._get(index)
            if credential is None or credential.state is CredentialState.DEAD:
                return
            credential.consecutive_rate_limits = 0
            credential.success_count += 1
            credential.refresh(time.time())

    async def mark_cooldown(self, index: int, is_daily_quota: bool = False) -> None:
        """
        Put a key on cooldown after a rate limit.

        Ordinary rate limits escalate progressively (60s, 120s, 240s, capped
        at 5x). Daily quota exhaustion keeps the key unusable until
        ``reset_daily_exhaustion``.
        """
        async with self._lock:
            credential = self._get(index)
            if credential is None or credential.state is CredentialState.DEAD:
                return
            now = time.time()
            credential.rate_limit_errors += 1
            credential.consecutive_rate_limits += 1
            credential.state = CredentialState.COOLING
            if is_daily_quota:
                credential.daily_exhausted = True
                credential.cooldown_until = now + self.daily_cooldown_seconds
                lib_logger.warning(f"Key #{index} DAILY QUOTA EXHAUSTED.")
            else:
                multiplier = min(
                    2 ** (credential.consecutive_rate_limits - 1),
                    self.max_cooldown_multiplier,
                )
                cooldown = self.cooldown_seconds * multiplier
                credential.cooldown_until = now + cooldown
                lib_logger.warning(
                    f"Key #{index} hit rate limit ({credential.consecutive_rate_limits}x). "
                    f"Cooling for {cooldown:.0f}s."
                )

    async def mark_dead(self, index: int) -> None:
        """Disable a key permanently. There is no way back to ALIVE."""
        async with self._lock:
            credential = self._get(index)
            if credential is None or credential.state is CredentialState.DEAD:
                return
            credential.state = CredentialState.DEAD
            credential.cooldown_until = 0.0
            lib_logger.warning(
                f"Key #{index} PERMANENTLY DISABLED (forbidden/revoked). "
                f"{self.alive_count} key(s) remaining."
            )

    async def reset_daily_exhaustion(self) -> None:
        """External reset of daily quota flags, e.g. after midnight Pacific."""
        async with self._lock:
            for credential in self._credentials:
                if credential.state is CredentialState.DEAD:
                    continue
                credential.daily_exhausted = False
                credential.consecutive_rate_limits = 0
                credential.cooldown_until = 0.0
                credential.state = CredentialState.ALIVE
        lib_logger.info("Daily exhaustion flags reset.")

    def _get(self, index: int) -> Optional[Credential]:
        if 0 <= index < len(self._credentials):
            return self._credentials[index]
        return None
