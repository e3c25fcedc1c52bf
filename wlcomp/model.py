"""Multi-year competition driver.

Runs one growing season per year and carries population densities across
years with a fecundity map:

  Annual loop:
    1. run the season from the fixed initial water content W0
    2. N_i' = B_i,final × N_i × F_i
    3. delta_i = |N_i' − N_i| / N_i  (0 for extinct species)
    4. stop when max(delta) < delta_tol (converged) or after Tmax years

Extinction is absorbing: N_i = 0 stays 0. Reaching Tmax without meeting the
tolerance is a normal outcome (`converged=False`), not an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from wlcomp.config import ModelConfig, default_config, validate_config
from wlcomp.season import SeasonResult, run_season
from wlcomp.types import EvaporationFn, Species, Termination

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════

def build_species(config: ModelConfig) -> List[Species]:
    """Species records (with derived a_m, psi_star) for every configured species."""
    return [
        Species.from_traits(sp.name, sp.psi_0, sp.Vmax, config.physiology)
        for sp in config.species
    ]


def fecundity_vector(config: ModelConfig) -> np.ndarray:
    """Per-species fecundity F_i, broadcasting a scalar to all species."""
    n = len(config.species)
    fec = config.competition.fecundity
    if isinstance(fec, (list, tuple, np.ndarray)):
        return np.asarray(fec, dtype=np.float64)
    return np.full(n, float(fec), dtype=np.float64)


def relative_change(old: np.ndarray, new: np.ndarray) -> np.ndarray:
    """Per-species |new − old| / old, with 0 wherever old == 0."""
    old = np.asarray(old, dtype=np.float64)
    new = np.asarray(new, dtype=np.float64)
    delta = np.zeros_like(old)
    nz = old > 0
    delta[nz] = np.abs(new[nz] - old[nz]) / old[nz]
    return delta


# ═══════════════════════════════════════════════════════════════════════
# RESULT
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class CompetitionResult:
    """Results of a multi-year competition run."""
    species_names: List[str] = field(default_factory=list)
    n_years: int = 0
    converged: bool = False
    # Row 0 is the initial density; row y is the density after year y
    densities: Optional[np.ndarray] = None       # (n_years + 1, n_species)
    # Annual timeseries (length = n_years)
    deltas: Optional[np.ndarray] = None          # (n_years, n_species)
    final_biomass: Optional[np.ndarray] = None   # (n_years, n_species)
    season_lengths: Optional[np.ndarray] = None  # (n_years,) final t per season
    terminations: List[Termination] = field(default_factory=list)
    # Full season trajectories, only when recording is enabled
    seasons: Optional[List[SeasonResult]] = None

    @property
    def equilibrium(self) -> np.ndarray:
        """Densities after the last simulated year."""
        return self.densities[-1].copy()

    @property
    def max_deltas(self) -> np.ndarray:
        """Largest relative density change in each year."""
        return self.deltas.max(axis=1) if self.n_years else np.zeros(0)

    def density_table(self):
        """Densities as a pandas DataFrame indexed by year (0 = initial)."""
        import pandas as pd
        df = pd.DataFrame(self.densities, columns=self.species_names)
        df.index.name = 'year'
        return df


# ═══════════════════════════════════════════════════════════════════════
# DRIVER
# ═══════════════════════════════════════════════════════════════════════

def run_competition(
    config: Optional[ModelConfig] = None,
    evaporation: Optional[EvaporationFn] = None,
    record_trajectories: Optional[bool] = None,
) -> CompetitionResult:
    """Iterate seasons until densities reach a quasi-equilibrium or Tmax.

    Args:
        config: Model configuration; defaults to `default_config()`.
        evaporation: Evaporative loss W → loss applied every step.
        record_trajectories: Keep every SeasonResult; defaults to
            config.output.record_trajectories.

    Returns:
        CompetitionResult with the yearly density table and convergence
        diagnostics.

    Raises:
        ValueError: If the configuration is invalid.
    """
    if config is None:
        config = default_config()
    else:
        validate_config(config)
    if record_trajectories is None:
        record_trajectories = config.output.record_trajectories

    species = build_species(config)
    names = [sp.name for sp in species]
    F = fecundity_vector(config)
    N = np.array([sp.N0 for sp in config.species], dtype=np.float64)

    comp = config.competition
    seas = config.season

    density_rows = [N.copy()]
    delta_rows = []
    biomass_rows = []
    season_lengths = []
    terminations = []
    seasons = [] if record_trajectories else None
    converged = False

    for year in range(comp.Tmax):
        season = run_season(
            species, N, config.physiology, config.soil,
            dt=seas.dt,
            W0=config.soil.W0,
            evaporation=evaporation,
            growth_cutoff=seas.growth_cutoff,
            max_steps=seas.max_steps,
        )
        B = season.final_biomass
        N_next = B * N * F
        delta = relative_change(N, N_next)

        logger.debug(
            "year %d: t_end=%.4g (%s) N=%s delta=%s",
            year, season.t_final, season.termination.value,
            np.array2string(N_next, precision=6),
            np.array2string(delta, precision=3),
        )

        density_rows.append(N_next.copy())
        delta_rows.append(delta)
        biomass_rows.append(B)
        season_lengths.append(season.t_final)
        terminations.append(season.termination)
        if seasons is not None:
            seasons.append(season)

        N = N_next
        if float(np.max(delta)) < comp.delta_tol:
            converged = True
            break

    n_years = len(delta_rows)
    if converged:
        logger.info("converged after %d years (delta_tol=%g)", n_years, comp.delta_tol)
    else:
        logger.info(
            "not converged after Tmax=%d years (max delta %.3g)",
            n_years, float(np.max(delta_rows[-1])),
        )

    n = len(species)
    return CompetitionResult(
        species_names=names,
        n_years=n_years,
        converged=converged,
        densities=np.vstack(density_rows),
        deltas=np.vstack(delta_rows) if delta_rows else np.zeros((0, n)),
        final_biomass=np.vstack(biomass_rows) if biomass_rows else np.zeros((0, n)),
        season_lengths=np.asarray(season_lengths, dtype=np.float64),
        terminations=terminations,
        seasons=seasons,
    )
