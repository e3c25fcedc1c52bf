"""Configuration system for WL-Comp.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Sections map 1:1 to YAML top-level keys; `species` is a top-level list.

Design decisions:
  - Physiological constants are a frozen section, passed explicitly to
    every physiology function (no module-level state)
  - Fecundity is either one scalar for all species or one value per species
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import yaml


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PhysiologySection:
    """Physiological constants shared by all species (immutable)."""
    ca: float = 350.0                # Atmospheric CO2 (µmol mol⁻¹)
    k_c: float = 460.0               # Michaelis constant of carboxylation for CO2
    rl: float = 0.01                 # Leaf respiration
    saturation: float = 0.8          # Empirical saturation constant (fraction of open-stomata rate)
    g_w: float = 0.01                # Stomatal conductance per MPa above psi_0
    nu: float = 4.0                  # Allometric scaling exponent (> 1)
    root_shoot: float = 0.5          # Root:shoot biomass ratio
    growth_efficiency: float = 0.75  # 1 − growth respiration fraction
    water_use: float = 0.003         # Transpiration unit conversion
    # Root-find controls
    root_xtol: float = 1e-8
    root_maxiter: int = 100
    root_brackets: int = 32


@dataclass
class SoilSection:
    """Brooks-Corey retention curve and seasonal initial condition."""
    Wmax: float = 1.0         # Water content at saturation
    Wmin: float = 0.0         # Residual water content (psi → −∞)
    lam: float = 0.25         # Pore-size distribution index
    psi_max: float = -0.0015  # Air-entry potential (MPa, < 0)
    W0: float = 0.6           # Water content at the start of every season


@dataclass
class SeasonSection:
    """Single-season integrator controls."""
    dt: float = 0.25               # Time step (days)
    growth_cutoff: float = 1e-6    # Stop once every species grows slower than this
    max_steps: int = 200_000       # Safety valve on steps per season


@dataclass
class CompetitionSection:
    """Multi-year driver controls."""
    Tmax: int = 100              # Maximum number of seasons
    delta_tol: float = 1e-4      # Convergence tolerance on relative density change
    fecundity: Union[float, List[float]] = 0.05  # Seeds per unit biomass (scalar or per species)


@dataclass
class SpeciesSection:
    """Traits and initial density of one species."""
    name: str = "species"
    psi_0: float = -1.5   # Minimum viable water potential (MPa)
    Vmax: float = 1.0     # Maximum assimilation capacity
    N0: float = 1.0       # Initial density (individuals per unit area)


@dataclass
class OutputSection:
    """What the driver keeps in memory."""
    record_trajectories: bool = False  # keep every season's full trajectory


def _default_species() -> List[SpeciesSection]:
    return [SpeciesSection(name="reference", psi_0=-1.5, Vmax=1.0, N0=1.0)]


@dataclass
class ModelConfig:
    """Complete model configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    physiology: PhysiologySection = field(default_factory=PhysiologySection)
    soil: SoilSection = field(default_factory=SoilSection)
    season: SeasonSection = field(default_factory=SeasonSection)
    competition: CompetitionSection = field(default_factory=CompetitionSection)
    output: OutputSection = field(default_factory=OutputSection)
    species: List[SpeciesSection] = field(default_factory=_default_species)


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values (including the species list) are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> ModelConfig:
    """Convert a merged YAML dict to a ModelConfig."""
    sections = {}
    section_map = {
        'physiology': PhysiologySection,
        'soil': SoilSection,
        'season': SeasonSection,
        'competition': CompetitionSection,
        'output': OutputSection,
    }
    for key, cls in section_map.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()

    # Species (top-level list, not a section)
    if 'species' in data and isinstance(data['species'], list):
        sections['species'] = [
            _dict_to_section(SpeciesSection, sp)
            for sp in data['species']
            if isinstance(sp, dict)
        ]

    return ModelConfig(**sections)


def validate_config(config: ModelConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Physiological constants are in their physical ranges
      - Retention curve is well-posed and W0 lies above Wmin
      - Integrator and driver controls are positive
      - Species list is non-empty, names unique, traits valid
      - Fecundity is a scalar or one non-negative value per species

    Species that can never assimilate (a_m <= 0) are allowed but trigger a
    UserWarning.
    """
    ph = config.physiology
    if ph.ca <= 0 or ph.k_c <= 0:
        raise ValueError(
            f"physiology.ca and physiology.k_c must be positive, "
            f"got ca={ph.ca}, k_c={ph.k_c}"
        )
    if ph.rl < 0:
        raise ValueError(f"physiology.rl must be >= 0, got {ph.rl}")
    if not (0.0 < ph.saturation <= 1.0):
        raise ValueError(
            f"physiology.saturation must be in (0, 1], got {ph.saturation}"
        )
    if ph.g_w <= 0:
        raise ValueError(f"physiology.g_w must be positive, got {ph.g_w}")
    if ph.nu <= 1.0:
        raise ValueError(f"physiology.nu must be > 1, got {ph.nu}")
    if ph.root_shoot < 0:
        raise ValueError(
            f"physiology.root_shoot must be >= 0, got {ph.root_shoot}"
        )
    if not (0.0 < ph.growth_efficiency <= 1.0):
        raise ValueError(
            f"physiology.growth_efficiency must be in (0, 1], "
            f"got {ph.growth_efficiency}"
        )
    if ph.water_use <= 0:
        raise ValueError(
            f"physiology.water_use must be positive, got {ph.water_use}"
        )
    if ph.root_xtol <= 0 or ph.root_maxiter < 1 or ph.root_brackets < 2:
        raise ValueError(
            f"root-find controls invalid: xtol={ph.root_xtol}, "
            f"maxiter={ph.root_maxiter}, brackets={ph.root_brackets}"
        )

    soil = config.soil
    if soil.Wmax <= soil.Wmin:
        raise ValueError(
            f"soil.Wmax ({soil.Wmax}) must be > soil.Wmin ({soil.Wmin})"
        )
    if soil.Wmin < 0:
        raise ValueError(f"soil.Wmin must be >= 0, got {soil.Wmin}")
    if soil.lam <= 0:
        raise ValueError(f"soil.lam must be positive, got {soil.lam}")
    if soil.psi_max >= 0:
        raise ValueError(f"soil.psi_max must be negative, got {soil.psi_max}")
    if soil.W0 <= soil.Wmin:
        raise ValueError(
            f"soil.W0 ({soil.W0}) must be > soil.Wmin ({soil.Wmin})"
        )

    season = config.season
    if season.dt <= 0:
        raise ValueError(f"season.dt must be positive, got {season.dt}")
    if season.growth_cutoff < 0:
        raise ValueError(
            f"season.growth_cutoff must be >= 0, got {season.growth_cutoff}"
        )
    if season.max_steps < 1:
        raise ValueError(
            f"season.max_steps must be >= 1, got {season.max_steps}"
        )

    comp = config.competition
    if comp.Tmax < 1:
        raise ValueError(f"competition.Tmax must be >= 1, got {comp.Tmax}")
    if comp.delta_tol <= 0:
        raise ValueError(
            f"competition.delta_tol must be positive, got {comp.delta_tol}"
        )

    # Species
    if len(config.species) == 0:
        raise ValueError("at least one species is required")
    names = [sp.name for sp in config.species]
    if len(set(names)) != len(names):
        raise ValueError(f"species names must be unique, got {names}")
    for i, sp in enumerate(config.species):
        if sp.psi_0 >= 0:
            raise ValueError(
                f"species[{i}].psi_0 must be negative, got {sp.psi_0}"
            )
        if sp.Vmax <= ph.rl:
            raise ValueError(
                f"species[{i}].Vmax ({sp.Vmax}) must exceed "
                f"physiology.rl ({ph.rl})"
            )
        if sp.N0 < 0:
            raise ValueError(f"species[{i}].N0 must be >= 0, got {sp.N0}")
        a_m = ph.saturation * sp.Vmax * ph.ca / (ph.ca + ph.k_c) - ph.rl
        if a_m <= 0:
            warnings.warn(
                f"species '{sp.name}' has non-positive capacity-limited "
                f"assimilation (a_m={a_m:.4g}) and will never grow.",
                UserWarning,
                stacklevel=2,
            )

    # Fecundity: scalar or per-species
    fec = comp.fecundity
    if isinstance(fec, (list, tuple, np.ndarray)):
        if len(fec) != len(config.species):
            raise ValueError(
                f"competition.fecundity must have one value per species "
                f"({len(config.species)}), got {len(fec)}"
            )
        values = list(fec)
    else:
        values = [fec]
    if any(f < 0 for f in values):
        raise ValueError(
            f"competition.fecundity must be >= 0, got {fec}"
        )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> ModelConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies; a `species` list in a
    later layer replaces the earlier list wholesale.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        overrides: Optional dict of parameter overrides (e.g. sweeps).

    Returns:
        Validated ModelConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> ModelConfig:
    """Return a ModelConfig with all default values."""
    config = ModelConfig()
    validate_config(config)
    return config
