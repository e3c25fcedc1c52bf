"""Plant–soil water physiology.

Stateless conversions used by the season integrator:
  - Soil water content ↔ soil water potential (Brooks-Corey retention)
  - Capacity-limited assimilation a_m and its water-potential threshold psi_star
  - Conductance-limited assimilation: implicit supply/demand balance solved
    by bracketing the smallest root on [0, Vmax − rl) and refining it with
    Brent's method
  - Per-species regime dispatch and the allometric growth transform

Assimilation closure
--------------------
Demand (carboxylation):   a = Vmax · ci / (ci + k_c) − rl
Supply (diffusion):       a = gs · (ca − ci)
Stomatal conductance:     gs = g_w · (psi_s − psi_0)   for psi_s > psi_0

Eliminating ci gives f(a) = gs · (ca − ci(a)) − a = 0 with
ci(a) = k_c (a + rl) / (Vmax − rl − a), defined on a ∈ [0, Vmax − rl).
Assimilation is capped at the capacity-limited rate
a_m = saturation · Vmax · ca / (ca + k_c) − rl, which the root reaches at
exactly psi_star.

The smallest non-negative root is taken as the physiologically relevant
branch. This is a modelling assumption, not a uniqueness result.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

import numpy as np
from scipy.optimize import brentq

from wlcomp.config import PhysiologySection
from wlcomp.types import Regime, Species

logger = logging.getLogger(__name__)

# Fraction of the assimilation domain excluded at its singular upper end.
_DOMAIN_EPS = 1e-9
# Relative CO2 gradient below which stomata count as fully open.
_GAP_RTOL = 1e-12


# ═══════════════════════════════════════════════════════════════════════
# SOIL WATER RETENTION
# ═══════════════════════════════════════════════════════════════════════

def water_potential_from_content(W: float, Wmax: float, Wmin: float,
                                 lam: float, psi_max: float) -> float:
    """Soil water potential from water content (Brooks-Corey).

    psi_s = psi_max · ((W − Wmin) / (Wmax − Wmin)) ^ (−1/lam)

    Args:
        W: Soil water content.
        Wmax: Content at saturation.
        Wmin: Residual content; psi_s → −∞ as W → Wmin.
        lam: Pore-size distribution index (> 0).
        psi_max: Air-entry potential (MPa, < 0).

    Returns:
        Soil water potential (MPa, < 0).

    Raises:
        ValueError: If W <= Wmin (potential is singular there).
    """
    if not W > Wmin:
        raise ValueError(f"water content W={W} must be > Wmin={Wmin}")
    rel = (W - Wmin) / (Wmax - Wmin)
    return float(psi_max * rel ** (-1.0 / lam))


def water_content_from_potential(psi_s: float, Wmax: float, Wmin: float,
                                 lam: float, psi_max: float) -> float:
    """Soil water content from water potential (inverse Brooks-Corey).

    W = Wmin + (Wmax − Wmin) · (psi_s / psi_max) ^ (−lam)

    Args:
        psi_s: Soil water potential (MPa, < 0).
        Wmax, Wmin, lam, psi_max: Retention parameters, as above.

    Returns:
        Soil water content.

    Raises:
        ValueError: If psi_s >= 0.
    """
    if not psi_s < 0:
        raise ValueError(f"soil water potential psi_s={psi_s} must be negative")
    return float(Wmin + (Wmax - Wmin) * (psi_s / psi_max) ** (-lam))


# ═══════════════════════════════════════════════════════════════════════
# ASSIMILATION
# ═══════════════════════════════════════════════════════════════════════

def max_assimilation_rate(Vmax: float, physiology: PhysiologySection) -> float:
    """Capacity-limited assimilation rate a_m.

    a_m = saturation · Vmax · ca / (ca + k_c) − rl
    """
    ph = physiology
    return float(ph.saturation * Vmax * ph.ca / (ph.ca + ph.k_c) - ph.rl)


def intercellular_co2(a, Vmax: float, physiology: PhysiologySection):
    """Intercellular CO2 needed to sustain assimilation a (inverse demand curve).

    ci = k_c · (a + rl) / (Vmax − rl − a); diverges as a → Vmax − rl.
    Accepts scalars or arrays.
    """
    ph = physiology
    return ph.k_c * (a + ph.rl) / (Vmax - ph.rl - a)


def stomatal_conductance(psi_s: float, psi_0: float,
                         physiology: PhysiologySection) -> float:
    """Water-limited stomatal conductance, linear in (psi_s − psi_0), zero below."""
    return float(physiology.g_w * max(psi_s - psi_0, 0.0))


def find_smallest_root(
    func: Callable,
    lower: float,
    upper: float,
    n_brackets: int = 32,
    xtol: float = 1e-8,
    maxiter: int = 100,
) -> Optional[float]:
    """Smallest root of func on [lower, upper].

    Evaluates func on an n_brackets-point grid, takes the first exact zero or
    sign change, and refines a sign change with Brent's method. func must
    accept numpy arrays.

    Args:
        func: Scalar function of one variable (array-friendly).
        lower: Lower end of the search domain.
        upper: Upper end of the search domain.
        n_brackets: Number of grid points used to bracket roots (>= 2).
        xtol: Absolute tolerance on the root location.
        maxiter: Iteration cap for the Brent refinement.

    Returns:
        The smallest root, or None if no sign change exists on the grid or
        the refinement did not converge within maxiter iterations.
    """
    grid = np.linspace(lower, upper, n_brackets)
    with np.errstate(divide='ignore', invalid='ignore'):
        values = np.asarray(func(grid), dtype=np.float64)
    signs = np.where(np.isfinite(values), np.sign(values), np.nan)

    zeros = np.flatnonzero(signs == 0.0)
    changes = np.flatnonzero(signs[:-1] * signs[1:] < 0)

    first_zero = zeros[0] if zeros.size else None
    first_change = changes[0] if changes.size else None
    if first_zero is None and first_change is None:
        return None
    if first_change is None or (first_zero is not None and first_zero <= first_change):
        return float(grid[first_zero])

    a, b = grid[first_change], grid[first_change + 1]
    root, info = brentq(func, a, b, xtol=xtol, maxiter=maxiter,
                        full_output=True, disp=False)
    if not info.converged:
        logger.warning(
            "root-find did not converge in %d iterations on [%.6g, %.6g] (%s)",
            maxiter, a, b, info.flag,
        )
        return None
    return float(root)


def assimilation_rate(psi_s: float, psi_0: float, Vmax: float,
                      physiology: PhysiologySection) -> float:
    """Instantaneous carbon assimilation rate at soil potential psi_s.

    Solves the supply/demand balance f(a) = gs (ca − ci(a)) − a = 0 for the
    smallest root on [0, Vmax − rl), then caps it at a_m.

    Args:
        psi_s: Soil water potential (MPa).
        psi_0: Species' minimum viable water potential (MPa).
        Vmax: Species' maximum assimilation capacity.
        physiology: Physiological constants.

    Returns:
        Assimilation rate in [0, a_m]. Zero when psi_s <= psi_0, when no root
        exists in the domain, or when the root-find fails to converge.
    """
    if psi_s <= psi_0:
        return 0.0
    ph = physiology
    a_m = max_assimilation_rate(Vmax, ph)
    if a_m <= 0:
        return 0.0

    gs = stomatal_conductance(psi_s, psi_0, ph)

    def mismatch(a):
        return gs * (ph.ca - intercellular_co2(a, Vmax, ph)) - a

    upper = (Vmax - ph.rl) * (1.0 - _DOMAIN_EPS)
    root = find_smallest_root(
        mismatch, 0.0, upper,
        n_brackets=ph.root_brackets,
        xtol=ph.root_xtol,
        maxiter=ph.root_maxiter,
    )
    if root is None:
        logger.debug(
            "no assimilation root for psi_s=%.6g psi_0=%.6g Vmax=%.6g",
            psi_s, psi_0, Vmax,
        )
        return 0.0
    return float(min(max(root, 0.0), a_m))


def water_potential_threshold(psi_0: float, Vmax: float,
                              physiology: PhysiologySection) -> float:
    """Soil potential psi_star above which assimilation is capacity-limited.

    psi_star = psi_0 + a_m / (g_w · (ca − ci(a_m)))

    Returns psi_0 when a_m <= 0 (no positive assimilation is ever possible)
    and +inf when the capacity limit coincides with fully open stomata
    (saturation == 1).
    """
    ph = physiology
    a_m = max_assimilation_rate(Vmax, ph)
    if a_m <= 0:
        return float(psi_0)
    if ph.saturation >= 1.0:
        return float(np.inf)
    gap = ph.ca - intercellular_co2(a_m, Vmax, ph)
    if gap <= _GAP_RTOL * ph.ca:
        return float(np.inf)
    return float(psi_0 + a_m / (ph.g_w * gap))


# ═══════════════════════════════════════════════════════════════════════
# REGIME DISPATCH & GROWTH
# ═══════════════════════════════════════════════════════════════════════

def classify_regime(psi_s: float, species: Species) -> Regime:
    """Classify one species' water-stress regime at soil potential psi_s."""
    if psi_s <= species.psi_0:
        return Regime.STRESSED
    if psi_s >= species.psi_star:
        return Regime.SATURATED
    return Regime.TRANSITIONAL


def regime_assimilation(psi_s: float, species: Species,
                        physiology: PhysiologySection) -> Tuple[Regime, float]:
    """Assimilation by regime: 0, root-find, or a_m; negatives clipped to 0.

    Returns:
        (regime, assimilation rate).
    """
    regime = classify_regime(psi_s, species)
    if regime is Regime.STRESSED:
        a = 0.0
    elif regime is Regime.TRANSITIONAL:
        a = assimilation_rate(psi_s, species.psi_0, species.Vmax, physiology)
    else:
        a = species.a_m
    return regime, max(a, 0.0)


def growth_rate(a: float, physiology: PhysiologySection) -> float:
    """Biomass growth rate G from assimilation (allometric transform).

    G = ((nu − 1) / nu) · growth_efficiency · a / (1 + root_shoot)

    The (nu − 1)/nu factor makes B = (G t)^(nu/(nu−1)) the exact solution for
    constant G; growth respiration and root allocation reduce the carbon
    available to shoots. Negative values are clipped to 0.
    """
    ph = physiology
    G = (ph.nu - 1.0) / ph.nu * ph.growth_efficiency * a / (1.0 + ph.root_shoot)
    return max(float(G), 0.0)
