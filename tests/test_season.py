"""Tests for wlcomp.season — single-season integration on a shared soil store."""

import logging

import numpy as np
import pytest

from wlcomp.config import PhysiologySection, SoilSection
from wlcomp.evaporation import linear_evaporation
from wlcomp.physiology import growth_rate, water_content_from_potential
from wlcomp.season import COL_PSI, COL_T, COL_W, SeasonResult, run_season
from wlcomp.types import Termination, Species


@pytest.fixture
def ph():
    return PhysiologySection()


@pytest.fixture
def soil():
    return SoilSection()


@pytest.fixture
def reference(ph):
    return Species.from_traits("reference", psi_0=-1.5, Vmax=1.0, physiology=ph)


@pytest.fixture
def pair(ph):
    return [
        Species.from_traits("fast", psi_0=-1.0, Vmax=1.5, physiology=ph),
        Species.from_traits("tolerant", psi_0=-1.5, Vmax=1.0, physiology=ph),
    ]


def _floor_content(psi, soil):
    return water_content_from_potential(psi, soil.Wmax, soil.Wmin, soil.lam, soil.psi_max)


# ── Reference season ─────────────────────────────────────────────────

class TestReferenceSeason:
    def test_runs_to_exhaustion(self, reference, ph, soil):
        result = run_season([reference], [1.0], ph, soil, dt=0.25)
        assert isinstance(result, SeasonResult)
        assert result.termination is Termination.EXHAUSTED
        assert result.psi_final <= -1.5
        assert result.final_biomass[0] > 0

    def test_ends_exactly_at_floor(self, reference, ph, soil):
        result = run_season([reference], [1.0], ph, soil, dt=0.25)
        assert result.W_final == pytest.approx(_floor_content(-1.5, soil))
        assert result.psi_final == -1.5

    def test_trajectory_shape(self, reference, ph, soil):
        result = run_season([reference], [1.0], ph, soil, dt=0.25)
        assert result.trajectory.shape == (result.n_steps + 1, 4)
        assert result.trajectory[0, COL_T] == 0.0
        assert result.trajectory[0, COL_W] == soil.W0

    def test_monotone_state(self, reference, ph, soil):
        traj = run_season([reference], [1.0], ph, soil, dt=0.25).trajectory
        assert np.all(np.diff(traj[:, COL_T]) >= 0)
        assert np.all(np.diff(traj[:, COL_W]) <= 0)
        assert np.all(np.diff(traj[:, COL_PSI]) <= 0)
        assert np.all(np.diff(traj[:, 3]) >= 0)

    def test_first_step(self, reference, ph, soil):
        """Saturated first step: closed-form biomass and water updates."""
        dt = 0.25
        result = run_season([reference], [1.0], ph, soil, dt=dt)
        G = growth_rate(reference.a_m, ph)
        p = ph.nu / (ph.nu - 1.0)
        dtau = dt ** p
        row = result.trajectory[1]
        assert row[COL_T] == pytest.approx(dt)
        assert row[3] == pytest.approx(G ** p * dtau)
        assert row[COL_W] == pytest.approx(
            soil.W0 - ph.water_use * G ** (1.0 / (ph.nu - 1.0)) * dtau
        )

    def test_deterministic(self, reference, ph, soil):
        r1 = run_season([reference], [1.0], ph, soil, dt=0.25)
        r2 = run_season([reference], [1.0], ph, soil, dt=0.25)
        np.testing.assert_array_equal(r1.trajectory, r2.trajectory)

    def test_higher_density_shortens_season(self, reference, ph, soil):
        sparse = run_season([reference], [1.0], ph, soil, dt=0.25)
        dense = run_season([reference], [2.0], ph, soil, dt=0.25)
        assert dense.t_final < sparse.t_final
        assert dense.final_biomass[0] < sparse.final_biomass[0]

    def test_dataframe(self, reference, ph, soil):
        result = run_season([reference], [1.0], ph, soil, dt=0.25)
        df = result.to_dataframe()
        assert list(df.columns) == ['t', 'W', 'psi_s', 'reference']
        assert len(df) == result.n_steps + 1


# ── Multi-species communities ────────────────────────────────────────

class TestCommunity:
    def test_identical_species_are_symmetric(self, ph, soil):
        a = Species.from_traits("a", psi_0=-1.5, Vmax=1.0, physiology=ph)
        b = Species.from_traits("b", psi_0=-1.5, Vmax=1.0, physiology=ph)
        result = run_season([a, b], [1.0, 1.0], ph, soil, dt=0.25)
        np.testing.assert_array_equal(result.biomass()[:, 0], result.biomass()[:, 1])

    def test_absent_species_draws_no_water(self, reference, ph, soil):
        other = Species.from_traits("other", psi_0=-1.5, Vmax=1.5, physiology=ph)
        alone = run_season([reference], [1.0], ph, soil, dt=0.25)
        mixed = run_season([reference, other], [1.0, 0.0], ph, soil, dt=0.25)
        np.testing.assert_array_equal(
            alone.trajectory[:, COL_W], mixed.trajectory[:, COL_W]
        )
        np.testing.assert_array_equal(alone.biomass()[:, 0], mixed.biomass()[:, 0])
        # per-individual biomass still accrues for the absent species
        assert mixed.final_biomass[1] > 0

    def test_absent_deeper_species_does_not_extend_season(self, reference, ph, soil):
        ghost = Species.from_traits("ghost", psi_0=-2.0, Vmax=1.0, physiology=ph)
        alone = run_season([reference], [1.0], ph, soil, dt=0.25)
        mixed = run_season([reference, ghost], [1.0, 0.0], ph, soil, dt=0.25)
        assert mixed.termination is Termination.EXHAUSTED
        assert mixed.psi_final == -1.5
        assert mixed.n_steps == alone.n_steps
        np.testing.assert_array_equal(
            alone.trajectory[:, COL_W], mixed.trajectory[:, COL_W]
        )
        assert mixed.final_biomass[0] == alone.final_biomass[0]

    def test_season_runs_to_lowest_psi_0(self, pair, ph, soil):
        result = run_season(pair, [1.0, 1.0], ph, soil, dt=0.25)
        assert result.termination is Termination.EXHAUSTED
        assert result.psi_final == -1.5

    def test_sensitive_species_stops_growing(self, pair, ph, soil):
        result = run_season(pair, [1.0, 1.0], ph, soil, dt=0.25)
        traj = result.trajectory
        dry = traj[:, COL_PSI] <= -1.0
        assert dry.sum() > 2
        fast_dry = traj[dry, 3]
        tolerant_dry = traj[dry, 4]
        assert np.all(fast_dry[1:] == fast_dry[0])
        assert tolerant_dry[-1] > tolerant_dry[0]

    def test_competitor_reduces_biomass(self, pair, ph, soil):
        alone = run_season([pair[1]], [1.0], ph, soil, dt=0.25)
        together = run_season(pair, [1.0, 1.0], ph, soil, dt=0.25)
        assert together.final_biomass[1] < alone.final_biomass[0]


# ── Termination paths ────────────────────────────────────────────────

class TestTermination:
    def test_already_exhausted(self, reference, ph, soil):
        # psi(0.15) ≈ -2.96 MPa, below psi_0
        result = run_season([reference], [1.0], ph, soil, dt=0.25, W0=0.15)
        assert result.n_steps == 0
        assert result.termination is Termination.EXHAUSTED
        assert result.trajectory.shape == (1, 4)
        assert result.final_biomass[0] == 0.0

    def test_growth_cutoff(self, reference, ph, soil):
        result = run_season([reference], [1.0], ph, soil, dt=0.25, growth_cutoff=1.0)
        assert result.termination is Termination.GROWTH_CUTOFF
        assert result.n_steps == 0

    def test_max_steps(self, reference, ph, soil, caplog):
        with caplog.at_level(logging.WARNING, logger="wlcomp.season"):
            result = run_season([reference], [1.0], ph, soil, dt=0.25, max_steps=5)
        assert result.termination is Termination.MAX_STEPS
        assert result.n_steps == 5
        assert any("max_steps" in rec.message for rec in caplog.records)

    def test_evaporation_shortens_season(self, reference, ph, soil):
        dry = run_season([reference], [1.0], ph, soil, dt=0.25)
        wet = run_season(
            [reference], [1.0], ph, soil, dt=0.25,
            evaporation=linear_evaporation(0.001),
        )
        assert wet.termination is Termination.EXHAUSTED
        assert wet.t_final < dry.t_final
        assert wet.final_biomass[0] < dry.final_biomass[0]

    def test_explicit_w0(self, reference, ph, soil):
        low = run_season([reference], [1.0], ph, soil, dt=0.25, W0=0.4)
        high = run_season([reference], [1.0], ph, soil, dt=0.25, W0=0.8)
        assert low.final_biomass[0] < high.final_biomass[0]


# ── Input validation ─────────────────────────────────────────────────

class TestValidation:
    def test_no_species(self, ph, soil):
        with pytest.raises(ValueError, match="at least one species"):
            run_season([], [], ph, soil, dt=0.25)

    def test_density_shape(self, reference, ph, soil):
        with pytest.raises(ValueError, match="one entry per species"):
            run_season([reference], [1.0, 2.0], ph, soil, dt=0.25)

    def test_negative_density(self, reference, ph, soil):
        with pytest.raises(ValueError, match="densities"):
            run_season([reference], [-1.0], ph, soil, dt=0.25)

    def test_non_finite_density(self, reference, ph, soil):
        with pytest.raises(ValueError, match="densities"):
            run_season([reference], [np.nan], ph, soil, dt=0.25)

    @pytest.mark.parametrize("dt", [0.0, -0.25])
    def test_bad_dt(self, reference, ph, soil, dt):
        with pytest.raises(ValueError, match="dt"):
            run_season([reference], [1.0], ph, soil, dt=dt)

    def test_w0_at_residual(self, reference, ph, soil):
        with pytest.raises(ValueError, match="Wmin"):
            run_season([reference], [1.0], ph, soil, dt=0.25, W0=0.0)
