"""Core data types for WL-Comp.

This module is the single home for:
  - Regime: per-species water-stress classification within a step
  - Termination: why a growing season stopped
  - Species: immutable per-run trait record with derived thresholds
  - EvaporationFn: signature of the caller-supplied evaporative loss hook

All modules import these types from here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from wlcomp.config import PhysiologySection


# Maps current soil water content to an additional (non-negative) loss.
EvaporationFn = Callable[[float], float]


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class Regime(IntEnum):
    """Water-stress regime of one species at the current soil potential.

    STRESSED      psi_s <= psi_0              → no assimilation
    TRANSITIONAL  psi_0 < psi_s < psi_star    → conductance-limited (root-find)
    SATURATED     psi_s >= psi_star           → capacity-limited (a_m)
    """
    STRESSED     = 0
    TRANSITIONAL = 1
    SATURATED    = 2


class Termination(str, Enum):
    """Reason a growing season ended."""
    EXHAUSTED     = "exhausted"       # psi_s fell to the lowest psi_0
    GROWTH_CUTOFF = "growth_cutoff"   # every species' growth below cutoff
    MAX_STEPS     = "max_steps"       # safety valve hit


# ═══════════════════════════════════════════════════════════════════════
# SPECIES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Species:
    """Per-run trait record for one annual species.

    `a_m` and `psi_star` are derived from (psi_0, Vmax) and the physiological
    constants exactly once, via `from_traits()`. psi_star >= psi_0 always.
    """
    name: str
    psi_0: float      # minimum viable soil water potential (MPa)
    Vmax: float       # maximum assimilation capacity
    a_m: float        # capacity-limited assimilation rate
    psi_star: float   # potential above which assimilation is saturated

    @classmethod
    def from_traits(
        cls,
        name: str,
        psi_0: float,
        Vmax: float,
        physiology: PhysiologySection,
    ) -> Species:
        """Build a Species, computing a_m and psi_star from the traits.

        Raises:
            ValueError: If psi_0 is not negative or Vmax <= leaf respiration.
        """
        from wlcomp.physiology import (
            max_assimilation_rate,
            water_potential_threshold,
        )

        if psi_0 >= 0:
            raise ValueError(f"psi_0 must be negative, got {psi_0}")
        if Vmax <= physiology.rl:
            raise ValueError(
                f"Vmax ({Vmax}) must exceed leaf respiration rl ({physiology.rl})"
            )
        return cls(
            name=name,
            psi_0=float(psi_0),
            Vmax=float(Vmax),
            a_m=max_assimilation_rate(Vmax, physiology),
            psi_star=water_potential_threshold(psi_0, Vmax, physiology),
        )
