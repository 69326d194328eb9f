"""
Fee model: turns a sparse {confirmation target -> fee rate} map into the
eight-field schedule a Lightning node needs.

Backends are responsible for collecting the rates and normalising them to
sat/kvB. This module is pure and does no I/O.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any

from loguru import logger

from chaincore.constants import FEE_PRIORITIES, FLOOR_TARGET, FeePriority
from chaincore.errors import ConfigurationError, ProtocolError
from chaincore.models import FeeEstimate, FeeRate


class FeeModel:
    """
    Maps the four priority buckets onto Lightning's fee roles.

    Buckets are ordered highest -> slowest:

        highest  -> max_acceptable (x2)
        urgent   -> unilateral_close, htlc_resolution
        normal   -> opening, delayed_to_us, penalty
        slow     -> mutual_close, min_acceptable (/2)

    A missing bucket yields the all-null estimate, never a partial one.
    """

    def __init__(self, priorities: Sequence[FeePriority] = FEE_PRIORITIES):
        if len(priorities) != 4:
            raise ConfigurationError(
                f"fee model needs exactly 4 priority buckets, got {len(priorities)}"
            )
        targets = [p.target for p in priorities]
        if targets != sorted(targets) or len(set(targets)) != len(targets):
            raise ConfigurationError(f"fee buckets must be strictly increasing: {targets}")
        self.priorities = tuple(priorities)

    @property
    def targets(self) -> tuple[int, ...]:
        return tuple(p.target for p in self.priorities)

    def build(self, fees: Mapping[int, int]) -> FeeEstimate:
        """
        Build the canonical estimate from rates keyed by confirmation target.

        An optional FLOOR_TARGET entry carries the backend's minimum fee; when
        absent the floor defaults to min_acceptable.
        """
        missing = [t for t in self.targets if fees.get(t) is None]
        if missing:
            logger.debug(f"Fee targets {missing} unavailable, returning null estimate")
            return FeeEstimate.null()

        highest, urgent, normal, slow = (int(fees[t]) for t in self.targets)
        min_acceptable = slow // 2
        floor = fees.get(FLOOR_TARGET)

        return FeeEstimate(
            opening=normal,
            mutual_close=slow,
            unilateral_close=urgent,
            delayed_to_us=normal,
            htlc_resolution=urgent,
            penalty=normal,
            min_acceptable=min_acceptable,
            max_acceptable=highest * 2,
            feerate_floor=int(floor) if floor is not None else min_acceptable,
            feerates=tuple(
                FeeRate(blocks=t, feerate=int(fees[t])) for t in self.targets
            ),
        )


def fee_in_range(estimates: Mapping[str, float], start: int, window: int) -> float | None:
    """First rate found for a target in [start, start + window), or None.

    Explorer fee maps are keyed by block count as strings and skip most
    targets, hence the forward search.
    """
    for target in range(start, start + window):
        rate = estimates.get(str(target))
        if rate is not None:
            return rate
    logger.info(f"No fee rate for target {start} within {window} blocks")
    return None


def scale_fee_rate(rate: Any, multiplier: float) -> int:
    """
    Convert a fee rate reported by a backend to sat/kvB.

    Raises:
        ProtocolError: if rate is not a finite, non-negative number
    """
    if isinstance(rate, bool) or not isinstance(rate, (int, float)):
        raise ProtocolError(f"fee rate is not a number: {rate!r}")
    if not math.isfinite(rate) or rate < 0:
        raise ProtocolError(f"invalid fee rate: {rate!r}")
    return round(rate * multiplier)
