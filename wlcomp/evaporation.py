"""Evaporative loss forcing.

The season integrator subtracts evaporation(W) from soil water once per
step, after transpiration. Any callable W → loss works; this module provides
the default (no evaporation) and two simple factories.

All losses are non-negative and never take W below W_residual.
"""

from __future__ import annotations

from wlcomp.types import EvaporationFn


def no_evaporation(W: float) -> float:
    """Default forcing: no evaporative loss."""
    return 0.0


def constant_evaporation(rate: float, W_residual: float = 0.0) -> EvaporationFn:
    """Fixed loss per step, limited to the water above W_residual.

    Args:
        rate: Loss per step (>= 0).
        W_residual: Content below which evaporation stops.

    Returns:
        Evaporation function W → loss.

    Raises:
        ValueError: If rate < 0.
    """
    if rate < 0:
        raise ValueError(f"evaporation rate must be >= 0, got {rate}")

    def evaporation(W: float) -> float:
        return min(rate, max(W - W_residual, 0.0))

    return evaporation


def linear_evaporation(coefficient: float, W_residual: float = 0.0) -> EvaporationFn:
    """Loss proportional to the water above W_residual.

    E(W) = coefficient × max(W − W_residual, 0)

    Args:
        coefficient: Fraction of available water lost per step, in [0, 1].
        W_residual: Content below which evaporation stops.

    Returns:
        Evaporation function W → loss.

    Raises:
        ValueError: If coefficient is outside [0, 1].
    """
    if not (0.0 <= coefficient <= 1.0):
        raise ValueError(
            f"evaporation coefficient must be in [0, 1], got {coefficient}"
        )

    def evaporation(W: float) -> float:
        return coefficient * max(W - W_residual, 0.0)

    return evaporation
