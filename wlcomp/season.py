"""Single-season growth integrator.

Advances a community of annual species through one growing season on a
shared, non-replenished soil water store:

  Per step (fixed dt):
    1. classify each species' regime and compute its assimilation
    2. convert assimilation to a growth rate G (clipped at 0)
    3. stop early if every present species (N > 0) grows slower than the
       growth cutoff
    4. advance biomass in transformed time τ(t) = t^(ν/(ν−1)):
         ΔB_i = G_i^(ν/(ν−1)) · Δτ
    5. transpiration: ΔW = water_use · Σ N_i · G_i^(1/(ν−1)) · Δτ
    6. evaporation(W) is subtracted after transpiration
    7. recompute psi_s from W and append the state row

The season is Active while psi_s exceeds the lowest psi_0 among species with
N > 0 and Exhausted otherwise. Water is never drawn below the content at
that psi_0; a step that would overshoot is shortened so that the store
ends exactly there, which keeps end-of-season biomass continuous in the
densities.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from wlcomp.config import PhysiologySection, SoilSection
from wlcomp.evaporation import no_evaporation
from wlcomp.physiology import (
    growth_rate,
    regime_assimilation,
    water_content_from_potential,
    water_potential_from_content,
)
from wlcomp.types import EvaporationFn, Species, Termination

logger = logging.getLogger(__name__)

# Trajectory column layout: t, W, psi_s, then one biomass column per species
COL_T = 0
COL_W = 1
COL_PSI = 2
N_STATE_COLS = 3


# ═══════════════════════════════════════════════════════════════════════
# RESULT
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SeasonResult:
    """Trajectory and terminal state of one growing season."""
    species_names: List[str]
    trajectory: np.ndarray     # (n_steps + 1, 3 + n_species)
    termination: Termination
    n_steps: int

    @property
    def columns(self) -> List[str]:
        return ['t', 'W', 'psi_s'] + list(self.species_names)

    @property
    def final_row(self) -> np.ndarray:
        return self.trajectory[-1]

    @property
    def t_final(self) -> float:
        return float(self.final_row[COL_T])

    @property
    def W_final(self) -> float:
        return float(self.final_row[COL_W])

    @property
    def psi_final(self) -> float:
        return float(self.final_row[COL_PSI])

    @property
    def final_biomass(self) -> np.ndarray:
        """Per-individual biomass of each species at season end."""
        return self.final_row[N_STATE_COLS:].copy()

    def biomass(self) -> np.ndarray:
        """Biomass trajectories, shape (n_steps + 1, n_species)."""
        return self.trajectory[:, N_STATE_COLS:]

    def to_dataframe(self):
        """Trajectory as a pandas DataFrame (one column per state variable)."""
        import pandas as pd
        return pd.DataFrame(self.trajectory, columns=self.columns)


# ═══════════════════════════════════════════════════════════════════════
# INTEGRATOR
# ═══════════════════════════════════════════════════════════════════════

def run_season(
    species: Sequence[Species],
    densities,
    physiology: PhysiologySection,
    soil: SoilSection,
    dt: float,
    W0: Optional[float] = None,
    evaporation: Optional[EvaporationFn] = None,
    growth_cutoff: float = 1e-6,
    max_steps: int = 200_000,
) -> SeasonResult:
    """Integrate one growing season from W0 until the soil is exhausted.

    Args:
        species: Species in the community (at least one).
        densities: Density N_i of each species (non-negative, same order).
        physiology: Physiological constants.
        soil: Retention parameters; soil.W0 is used when W0 is None.
        dt: Time step (> 0).
        W0: Initial soil water content (> soil.Wmin).
        evaporation: Evaporative loss W → loss; default none.
        growth_cutoff: Stop once every present species' G falls below this.
        max_steps: Safety valve on the number of steps.

    Returns:
        SeasonResult with the full (t, W, psi_s, B_1..B_n) trajectory.

    Raises:
        ValueError: On empty species, misaligned or negative densities,
            non-positive dt, or W0 <= Wmin.
    """
    species = list(species)
    n = len(species)
    if n == 0:
        raise ValueError("run_season requires at least one species")
    N = np.asarray(densities, dtype=np.float64)
    if N.shape != (n,):
        raise ValueError(
            f"densities must have one entry per species ({n}), got shape {N.shape}"
        )
    if np.any(N < 0) or not np.all(np.isfinite(N)):
        raise ValueError(f"densities must be finite and >= 0, got {N}")
    if not dt > 0:
        raise ValueError(f"dt must be positive, got {dt}")
    if W0 is None:
        W0 = soil.W0
    if evaporation is None:
        evaporation = no_evaporation

    ph = physiology
    retention = (soil.Wmax, soil.Wmin, soil.lam, soil.psi_max)
    p_biomass = ph.nu / (ph.nu - 1.0)
    p_water = 1.0 / (ph.nu - 1.0)

    present = N > 0
    # The floor is set by the deepest-rooted species actually present.
    floor_species = [sp for sp, p in zip(species, present) if p] or species
    psi_floor = min(sp.psi_0 for sp in floor_species)
    W_floor = water_content_from_potential(psi_floor, *retention)

    t = 0.0
    W = float(W0)
    psi_s = water_potential_from_content(W, *retention)
    B = np.zeros(n, dtype=np.float64)

    rows = [np.concatenate(([t, W, psi_s], B))]
    termination = Termination.EXHAUSTED
    n_steps = 0

    while psi_s > psi_floor:
        if n_steps >= max_steps:
            logger.warning(
                "season stopped at max_steps=%d (t=%.4g, psi_s=%.6g)",
                max_steps, t, psi_s,
            )
            termination = Termination.MAX_STEPS
            break

        G = np.array([
            growth_rate(regime_assimilation(psi_s, sp, ph)[1], ph)
            for sp in species
        ])
        # Absent species (N = 0) still accrue per-individual biomass but
        # neither draw water nor keep the season alive.
        if np.all(G[present] < growth_cutoff):
            termination = Termination.GROWTH_CUTOFF
            break

        tau = t ** p_biomass
        dtau = (t + dt) ** p_biomass - tau

        transpired = ph.water_use * float(np.sum(N * G ** p_water)) * dtau
        W_next = W - transpired
        W_next = W_next - float(evaporation(W_next))

        if W_next <= W_floor:
            # Shorten the final step so the store ends exactly at the floor.
            loss = W - W_next
            frac = min(max((W - W_floor) / loss, 0.0), 1.0) if loss > 0 else 0.0
            dtau *= frac
            t = (tau + dtau) ** (1.0 / p_biomass)
            W = W_floor
            psi_s = psi_floor
        else:
            t += dt
            W = W_next
            psi_s = water_potential_from_content(W, *retention)

        B = B + G ** p_biomass * dtau
        n_steps += 1
        rows.append(np.concatenate(([t, W, psi_s], B)))

    logger.debug(
        "season ended (%s) after %d steps: t=%.4g W=%.6g psi_s=%.6g",
        termination.value, n_steps, t, W, psi_s,
    )
    return SeasonResult(
        species_names=[sp.name for sp in species],
        trajectory=np.vstack(rows),
        termination=termination,
        n_steps=n_steps,
    )
