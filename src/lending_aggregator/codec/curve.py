"""Piecewise-linear interest-rate curves."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Generic, TypeVar

from .fixed import FixedPoint

_F = TypeVar("_F", bound=FixedPoint)


class PiecewiseLinearCurve(Generic[_F]):
    """Borrow rate as a function of utilization.

    Control points are ``(utilization, rate)`` pairs with non-decreasing
    utilization. Between two bracketing points the rate is linearly interpolated;
    an exact hit on a control point returns the first point at that utilization.
    Utilization is clamped to [0, 1] before lookup.
    """

    def __init__(self, points: Sequence[tuple[_F, _F]]):
        if not points:
            raise ValueError("curve needs at least one point")
        for (prev_util, _), (util, _) in zip(points, points[1:]):
            if util < prev_util:
                raise ValueError("curve utilization points must be non-decreasing")
        self.points: tuple[tuple[_F, _F], ...] = tuple(points)

    def rate_at(self, utilization: _F) -> _F:
        util = utilization.clamp(utilization.zero(), utilization.one())

        first_util, first_rate = self.points[0]
        if util <= first_util:
            return first_rate

        for (x0, y0), (x1, y1) in zip(self.points, self.points[1:]):
            if util == x0:
                return y0
            if x0 < util <= x1:
                if util == x1:
                    return y1
                bits = y0.bits + (y1.bits - y0.bits) * (util.bits - x0.bits) // (
                    x1.bits - x0.bits
                )
                return type(y0)(bits)

        return self.points[-1][1]

    def __repr__(self) -> str:
        return f"PiecewiseLinearCurve({list(self.points)!r})"
