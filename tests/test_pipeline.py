"""Tests for the update pipeline model (ves_targetdist.pipeline).

Covers:
1. PolicyFlags — exclusivity and derived check flags
2. plan_pipeline — step order for every policy mix
3. GridPair — log refresh and collaborator validation
4. PipelineTrace — querying and summaries
"""

import numpy as np
import pytest

from ves_targetdist.errors import ConfigurationError, DimensionMismatchError, UsageError
from ves_targetdist.grid import Grid
from ves_targetdist.pipeline import (
    CollaboratorLinks,
    GridPair,
    GridSide,
    PipelineStep,
    PipelineTrace,
    PolicyFlags,
    StepRecord,
    plan_pipeline,
)

S = PipelineStep


@pytest.fixture
def pair():
    grid = Grid.from_bounds("targetdist", ["s1"], [0.0], [1.0], [4])
    log_grid = Grid("log_targetdist", grid.axes)
    return GridPair(GridSide.PRIMARY, grid, log_grid, CollaboratorLinks())


# ═══════════════════════════════════════════════════════════════════
# 1. PolicyFlags
# ═══════════════════════════════════════════════════════════════════

class TestPolicyFlags:

    def test_defaults_check_everything(self):
        f = PolicyFlags.from_keywords()
        assert f.check_normalization and f.check_nonnegative
        assert not (f.bias_cutoff or f.shift_to_zero or f.force_normalization)

    def test_cutoff_disables_normalization_check(self):
        f = PolicyFlags.from_keywords(bias_cutoff=True)
        assert not f.check_normalization
        assert f.check_nonnegative

    def test_shift_disables_nonnegative_check(self):
        f = PolicyFlags.from_keywords(shift_to_zero=True)
        assert f.check_normalization
        assert not f.check_nonnegative

    def test_normalize_disables_normalization_check(self):
        f = PolicyFlags.from_keywords(normalize=True)
        assert f.force_normalization
        assert not f.check_normalization

    @pytest.mark.parametrize("kwargs", [
        {"bias_cutoff": True, "shift_to_zero": True},
        {"bias_cutoff": True, "normalize": True},
        {"shift_to_zero": True, "normalize": True},
    ])
    def test_pairwise_exclusive(self, kwargs):
        with pytest.raises(ConfigurationError):
            PolicyFlags.from_keywords(**kwargs)

    def test_frozen(self):
        f = PolicyFlags()
        with pytest.raises(AttributeError):
            f.shift_to_zero = True


# ═══════════════════════════════════════════════════════════════════
# 2. plan_pipeline
# ═══════════════════════════════════════════════════════════════════

class TestPlanPipeline:

    def test_plain(self):
        plan = plan_pipeline(PolicyFlags.from_keywords())
        assert plan == (S.UPDATE_GRID, S.CHECK_NORMALIZATION, S.CHECK_NONNEGATIVE)

    def test_modifiers_come_second(self):
        plan = plan_pipeline(PolicyFlags.from_keywords(), n_modifiers=2)
        assert plan[:2] == (S.UPDATE_GRID, S.APPLY_MODIFIERS)

    def test_cutoff(self):
        plan = plan_pipeline(PolicyFlags.from_keywords(bias_cutoff=True))
        assert plan == (S.UPDATE_GRID, S.BIAS_CUTOFF, S.CHECK_NONNEGATIVE)

    def test_shift(self):
        plan = plan_pipeline(PolicyFlags.from_keywords(shift_to_zero=True), n_modifiers=1)
        assert plan == (S.UPDATE_GRID, S.APPLY_MODIFIERS, S.SHIFT_TO_ZERO,
                        S.CHECK_NORMALIZATION)

    def test_normalize(self):
        plan = plan_pipeline(PolicyFlags.from_keywords(normalize=True))
        assert plan == (S.UPDATE_GRID, S.FORCE_NORMALIZATION, S.CHECK_NONNEGATIVE)

    def test_reweight_side_skips_checks(self):
        for kwargs in ({}, {"bias_cutoff": True}, {"shift_to_zero": True}, {"normalize": True}):
            plan = plan_pipeline(PolicyFlags.from_keywords(**kwargs), GridSide.REWEIGHT)
            assert S.CHECK_NORMALIZATION not in plan
            assert S.CHECK_NONNEGATIVE not in plan
            assert plan[0] is S.UPDATE_GRID

    def test_at_most_one_post_processing_step(self):
        exclusive = {S.BIAS_CUTOFF, S.SHIFT_TO_ZERO, S.FORCE_NORMALIZATION}
        for kwargs in ({}, {"bias_cutoff": True}, {"shift_to_zero": True}, {"normalize": True}):
            plan = plan_pipeline(PolicyFlags.from_keywords(**kwargs), n_modifiers=1)
            assert len(exclusive.intersection(plan)) <= 1


# ═══════════════════════════════════════════════════════════════════
# 3. GridPair
# ═══════════════════════════════════════════════════════════════════

class TestGridPair:

    def test_refresh_log_shifts_minimum(self, pair):
        pair.grid.set_values([0.5, 1.0, 2.0, 1.0, 0.5])
        pair.refresh_log()
        expected = -np.log([0.5, 1.0, 2.0, 1.0, 0.5])
        expected -= expected.min()
        np.testing.assert_allclose(pair.log_grid.values, expected)
        assert pair.log_grid.min_value() == 0.0

    def test_refresh_log_with_zero_value(self, pair):
        pair.grid.set_values([0.0, 1.0, 2.0, 1.0, 1.0])
        pair.refresh_log()
        assert np.isinf(pair.log_grid.value(0))
        assert pair.log_grid.value(2) == 0.0

    def test_integrate(self, pair):
        pair.grid.set_values(np.ones(5))
        assert pair.integrate() == pytest.approx(1.0)
        assert pair.integrate(np.full(5, 2.0)) == pytest.approx(2.0)

    def test_points_cached(self, pair):
        assert pair.points is pair.points
        assert pair.points.shape == (5, 1)

    def test_missing_collaborator(self, pair):
        with pytest.raises(UsageError, match="fes grid has to be linked"):
            pair.collaborator("fes", "TEST")

    def test_mis_sized_collaborator(self, pair):
        pair.links.fes = Grid.from_bounds("fes", ["s1"], [0.0], [1.0], [8])
        with pytest.raises(DimensionMismatchError):
            pair.collaborator("fes", "TEST")

    def test_linked_collaborator(self, pair):
        fes = Grid.from_bounds("fes", ["s1"], [0.0], [1.0], [4])
        pair.links.fes = fes
        assert pair.collaborator("fes", "TEST") is fes

    def test_links_clear(self):
        links = CollaboratorLinks(fes=Grid.from_bounds("f", ["s"], [0], [1], [2]))
        links.clear()
        assert links.fes is None


# ═══════════════════════════════════════════════════════════════════
# 4. PipelineTrace
# ═══════════════════════════════════════════════════════════════════

class TestPipelineTrace:

    @pytest.fixture
    def trace(self):
        t = PipelineTrace("UNIFORM")
        t.add(StepRecord(GridSide.PRIMARY, S.UPDATE_GRID))
        t.add(StepRecord(GridSide.PRIMARY, S.CHECK_NORMALIZATION, mass=1.3,
                         details={"warning": True}))
        t.add(StepRecord(GridSide.REWEIGHT, S.UPDATE_GRID))
        return t

    def test_steps_per_side(self, trace):
        assert trace.steps() == (S.UPDATE_GRID, S.CHECK_NORMALIZATION, S.UPDATE_GRID)
        assert trace.steps(GridSide.REWEIGHT) == (S.UPDATE_GRID,)

    def test_warnings(self, trace):
        warned = trace.warnings()
        assert len(warned) == 1
        assert warned[0].mass == pytest.approx(1.3)

    def test_summary(self, trace):
        s = trace.summary()
        assert s.startswith("UNIFORM: ")
        assert "primary: update_grid → check_normalization" in s
        assert "reweight: update_grid" in s
