#!/usr/bin/env python3
"""Run a multi-year water-limited competition from YAML configuration.

Loads a base config (optionally merged with a scenario override), iterates
seasons until densities converge or Tmax is reached, and prints the yearly
density table with convergence diagnostics.

Usage:
    python scripts/run_competition.py
    python scripts/run_competition.py --scenario configs/two_species.yaml
    python scripts/run_competition.py --tmax 50 --evaporation 0.001 --log-level DEBUG

References:
    - wlcomp/config.py: ModelConfig, load_config
    - wlcomp/model.py: run_competition, CompetitionResult
"""

import argparse
import logging
import sys
from pathlib import Path

# ── Project imports ──────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from wlcomp.config import load_config
from wlcomp.evaporation import linear_evaporation
from wlcomp.model import build_species, run_competition


# ═══════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════

def main():
    parser = argparse.ArgumentParser(
        description="Run a water-limited annual plant competition model.",
        epilog="Example: python scripts/run_competition.py --scenario configs/two_species.yaml",
    )
    parser.add_argument(
        "--config", type=str, default=str(PROJECT_ROOT / "configs" / "default.yaml"),
        help="Base config YAML (default: configs/default.yaml)",
    )
    parser.add_argument(
        "--scenario", type=str, default=None,
        help="Scenario YAML merged over the base config",
    )
    parser.add_argument(
        "--tmax", type=int, default=None,
        help="Override competition.Tmax",
    )
    parser.add_argument(
        "--evaporation", type=float, default=0.0,
        help="Linear evaporation coefficient per step (default: 0, none)",
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    overrides = {}
    if args.tmax is not None:
        overrides['competition'] = {'Tmax': args.tmax}
    config = load_config(args.config, args.scenario, overrides or None)

    evaporation = None
    if args.evaporation > 0:
        evaporation = linear_evaporation(args.evaporation, W_residual=config.soil.Wmin)

    print("=" * 60)
    print("WL-Comp: water-limited annual plant competition")
    print("=" * 60)
    for sp in build_species(config):
        print(f"  {sp.name:<12} psi_0={sp.psi_0:7.3f}  Vmax={sp.Vmax:6.3f}  "
              f"a_m={sp.a_m:6.4f}  psi_star={sp.psi_star:7.3f}")
    print()

    result = run_competition(config, evaporation=evaporation)

    print(result.density_table().to_string(float_format=lambda x: f"{x:.6g}"))
    print()
    status = "converged" if result.converged else "did not converge"
    print(f"{status} after {result.n_years} years "
          f"(max delta {result.max_deltas[-1]:.3g}, "
          f"tol {config.competition.delta_tol:g})")


if __name__ == "__main__":
    main()
