"""Token usage and cost accounting for one bridge session."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from switchboard.errors import PersistenceError
from switchboard.session.models import TokenCounts, TokenUsageSnapshot
from switchboard.storage import read_json, write_json

logger = logging.getLogger(__name__)


class CostState(BaseModel):
    """Session cost, which resets, and all-time cost, which only grows."""

    session_usd: float = 0.0
    all_time_usd: float = 0.0


class TelemetryAccumulator:
    """Accumulates per-message usage and session cost reports.

    The agent reports the *running* session cost, so all-time spend grows
    by the difference between consecutive reports.  A report lower than
    the previous one is counted in ``negative_cost_deltas`` and leaves the
    all-time figure alone.
    """

    def __init__(self, all_time_usd: float = 0.0, state_path: Path | None = None) -> None:
        self._usage = TokenUsageSnapshot()
        self._session_usd = 0.0
        self._all_time_usd = max(0.0, all_time_usd)
        self._state_path = state_path
        self._negative_cost_deltas = 0

    @classmethod
    def load(cls, path: Path) -> TelemetryAccumulator:
        """Create an accumulator seeded with the all-time cost stored at *path*."""
        all_time = 0.0
        try:
            data = read_json(path)
        except PersistenceError as exc:
            logger.error("Ignoring unreadable telemetry state: %s", exc)
            data = None
        if isinstance(data, dict):
            value = data.get("allTimeCostUsd")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                all_time = float(value)
        return cls(all_time_usd=all_time, state_path=path)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def usage(self) -> TokenUsageSnapshot:
        return self._usage.model_copy(deep=True)

    @property
    def cost(self) -> CostState:
        return CostState(session_usd=self._session_usd, all_time_usd=self._all_time_usd)

    @property
    def negative_cost_deltas(self) -> int:
        """How many cost reports went backwards."""
        return self._negative_cost_deltas

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_usage(self, delta: dict[str, Any] | TokenCounts) -> TokenUsageSnapshot:
        """Add one message's usage to the cumulative counters."""
        current = delta if isinstance(delta, TokenCounts) else TokenCounts.from_usage(delta)
        self._usage = TokenUsageSnapshot(
            current=current,
            cumulative=self._usage.cumulative + current,
        )
        return self.usage

    def record_cost(self, session_cost_usd: float) -> CostState:
        """Apply a running session cost report."""
        delta = session_cost_usd - self._session_usd
        if delta < 0:
            self._negative_cost_deltas += 1
            logger.warning(
                "Session cost went backwards (%.6f -> %.6f); all-time cost unchanged",
                self._session_usd,
                session_cost_usd,
            )
        else:
            self._all_time_usd += delta
        self._session_usd = session_cost_usd
        return self.cost

    def restore_session(self, session_cost_usd: float) -> CostState:
        """Adopt the cost of a reloaded conversation without touching all-time."""
        self._session_usd = max(0.0, session_cost_usd)
        return self.cost

    def reset_session(self) -> None:
        """Zero the session cost and every token counter."""
        self._usage = TokenUsageSnapshot()
        self._session_usd = 0.0

    def reset_tokens_only(self) -> None:
        """Zero token counters after the agent compacts its context."""
        self._usage = TokenUsageSnapshot()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> bool:
        """Persist the all-time cost; returns False when nothing was written."""
        if self._state_path is None:
            return False
        try:
            write_json(self._state_path, {"allTimeCostUsd": self._all_time_usd})
        except PersistenceError as exc:
            logger.error("Failed to save telemetry state: %s", exc)
            return False
        return True
