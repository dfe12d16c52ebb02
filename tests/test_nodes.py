"""Tests for the static variants (ves_targetdist.nodes).

Covers:
1. DistributionNode — base-class contract
2. UNIFORM
3. GAUSSIAN — values, dimension, keyword construction, validation
4. Weight normalisation
"""

import numpy as np
import pytest

from ves_targetdist import TargetDistribution, target_distribution_register
from ves_targetdist.errors import ConfigurationError, DimensionMismatchError, UsageError
from ves_targetdist.grid import Grid
from ves_targetdist.integration import integrate_grid
from ves_targetdist.keywords import KeywordReader
from ves_targetdist.nodes import (
    POLICY_KEYWORDS,
    DistributionNode,
    GaussianDistribution,
    UniformDistribution,
    _normalized_weights,
)


# ═══════════════════════════════════════════════════════════════════
# 1. Base-class contract
# ═══════════════════════════════════════════════════════════════════

class TestDistributionNodeContract:

    def test_defaults(self):
        node = UniformDistribution()
        assert node.is_static and not node.is_dynamic
        assert node.dimension == 0
        assert not node.needs_fes_grid
        assert not node.needs_bias_grid
        assert not node.needs_bias_without_cutoff_grid

    def test_uniform_accepts_all_policies(self):
        assert UniformDistribution.policy_keywords == POLICY_KEYWORDS

    def test_dimension_set_once(self):
        node = GaussianDistribution([[0.0, 0.0]], [[1.0, 1.0]])
        with pytest.raises(UsageError):
            node._set_dimension(3)

    def test_base_evaluate_unavailable(self):
        class Bare(DistributionNode):
            name = "BARE"

        grid = Grid.from_bounds("g", ["s1"], [0], [1], [2])
        with pytest.raises(UsageError):
            Bare().evaluate(grid.points(), grid)

    def test_dynamic_value_raises(self):
        class Dynamic(UniformDistribution):
            def __init__(self):
                super().__init__()
                self._set_dynamic()

        grid = Grid.from_bounds("g", ["s1"], [0], [1], [2])
        with pytest.raises(UsageError, match="dynamic"):
            Dynamic().value([0.5], grid)

    def test_static_values_cached_per_side(self):
        calls = []

        class Counting(UniformDistribution):
            def evaluate(self, points, grid):
                calls.append(len(points))
                return super().evaluate(points, grid)

        td = TargetDistribution(Counting())
        td.setup_grids(["s1"], [0.0], [1.0], [10])
        td.setup_reweight_grids(["s1"], [0.0], [1.0], [20])
        td.update()
        td.update()
        assert calls == [11, 21]


# ═══════════════════════════════════════════════════════════════════
# 2. UNIFORM
# ═══════════════════════════════════════════════════════════════════

class TestUniform:

    def test_value_is_inverse_volume(self):
        grid = Grid.from_bounds("g", ["s1", "s2"], [0, -1], [2, 1], [4, 4])
        assert UniformDistribution().value([0.5, 0.0], grid) == pytest.approx(0.25)

    def test_grid_is_normalized(self):
        td = TargetDistribution(UniformDistribution())
        td.setup_grids(["s1", "s2"], [-1.0, 0.0], [1.0, 3.0], [10, 15], [False, True])
        td.update()
        assert integrate_grid(td.targetdist_grid) == pytest.approx(1.0)
        np.testing.assert_allclose(td.log_targetdist_grid.values, 0.0)


# ═══════════════════════════════════════════════════════════════════
# 3. GAUSSIAN
# ═══════════════════════════════════════════════════════════════════

class TestGaussian:

    def test_integrates_to_one(self):
        td = TargetDistribution(GaussianDistribution([[0.5]], [[0.3]]))
        td.setup_grids(["s1"], [-3.0], [4.0], [300])
        td.update()
        assert integrate_grid(td.targetdist_grid) == pytest.approx(1.0, abs=1e-6)

    def test_peak_value(self):
        node = GaussianDistribution([[1.0, -1.0]], [[0.5, 2.0]])
        grid = Grid.from_bounds("g", ["s1", "s2"], [-5, -5], [5, 5], [10, 10])
        expected = 1.0 / (2.0 * np.pi * 0.5 * 2.0)
        assert node.value([1.0, -1.0], grid) == pytest.approx(expected)

    def test_mixture_weights(self):
        node = GaussianDistribution([[-2.0], [2.0]], [[0.5], [0.5]], weights=[1.0, 3.0])
        grid = Grid.from_bounds("g", ["s1"], [-5], [5], [10])
        ratio = node.value([2.0], grid) / node.value([-2.0], grid)
        assert ratio == pytest.approx(3.0, rel=1e-6)

    def test_dimension_from_centers(self):
        assert GaussianDistribution([[0.0, 1.0, 2.0]], [[1.0, 1.0, 1.0]]).dimension == 3

    def test_grid_dimension_mismatch(self):
        td = TargetDistribution(GaussianDistribution([[0.0, 0.0]], [[1.0, 1.0]]))
        with pytest.raises(DimensionMismatchError):
            td.setup_grids(["s1"], [-1.0], [1.0], [10])

    @pytest.mark.parametrize("centers,sigmas", [
        ([[0.0, 0.0]], [[1.0]]),
        ([[0.0]], [[0.0]]),
        ([[0.0]], [[-1.0]]),
    ])
    def test_invalid(self, centers, sigmas):
        with pytest.raises(ConfigurationError):
            GaussianDistribution(centers, sigmas)

    def test_from_single_keywords(self):
        reader = KeywordReader("GAUSSIAN", ["CENTER=0.0,1.0", "SIGMA=0.5,0.25"])
        node = GaussianDistribution.from_keywords(reader, target_distribution_register())
        np.testing.assert_allclose(node.centers, [[0.0, 1.0]])
        np.testing.assert_allclose(node.sigmas, [[0.5, 0.25]])
        assert reader.unread == []

    def test_from_numbered_keywords(self):
        reader = KeywordReader("GAUSSIAN", [
            "CENTER1=-1", "SIGMA1=0.2", "CENTER2=1", "SIGMA2=0.4", "WEIGHTS=1,1"])
        node = GaussianDistribution.from_keywords(reader, target_distribution_register())
        assert node.centers.shape == (2, 1)
        np.testing.assert_allclose(node.weights, [0.5, 0.5])

    def test_numbered_center_without_sigma(self):
        reader = KeywordReader("GAUSSIAN", ["CENTER1=-1"])
        with pytest.raises(ConfigurationError, match="SIGMA1"):
            GaussianDistribution.from_keywords(reader, target_distribution_register())

    def test_missing_center(self):
        reader = KeywordReader("GAUSSIAN", ["SIGMA=1"])
        with pytest.raises(ConfigurationError, match="CENTER"):
            GaussianDistribution.from_keywords(reader, target_distribution_register())


# ═══════════════════════════════════════════════════════════════════
# 4. Weight normalisation
# ═══════════════════════════════════════════════════════════════════

class TestNormalizedWeights:

    @pytest.mark.parametrize("scale", [1e-9, 0.3, 1.0, 7.0, 1e12])
    def test_sum_is_one_for_any_scale(self, scale):
        w = _normalized_weights("T", [scale * x for x in (0.1, 2.0, 3.7, 1.3)], 4)
        assert abs(np.sum(w) - 1.0) < 1e-12

    def test_default_equal(self):
        np.testing.assert_allclose(_normalized_weights("T", None, 4), 0.25)

    @pytest.mark.parametrize("weights", [[1.0], [1.0, -1.0], [0.0, 0.0]])
    def test_invalid(self, weights):
        with pytest.raises(ConfigurationError):
            _normalized_weights("T", weights, 2)
