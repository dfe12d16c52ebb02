"""Tests for grids and quadrature (ves_targetdist.grid, ves_targetdist.integration).

Covers:
1. Axis — point counts, weights, nearest-point lookup
2. Grid — flat traversal order, value access, bulk operations
3. Projection — mass preservation and argument checks
4. Integration — quadrature sums and normalisation
"""

import numpy as np
import pytest

from ves_targetdist.errors import NormalizationFailureError
from ves_targetdist.grid import Axis, Grid
from ves_targetdist.integration import integrate_grid, integration_weights, normalize_grid


# ── Fixtures ────────────────────────────────────────────────────

@pytest.fixture
def grid_2d():
    """3 x 3 grid on [0, 1] x [0, 2]."""
    return Grid.from_bounds("g", ["s1", "s2"], [0.0, 0.0], [1.0, 2.0], [2, 2])


@pytest.fixture
def gaussian_2d():
    """Normalised 2-D Gaussian on a fine grid."""
    g = Grid.from_bounds("p", ["s1", "s2"], [-4.0, -4.0], [4.0, 4.0], [80, 60])
    pts = g.points()
    g.set_values(np.exp(-0.5 * np.sum(pts ** 2, axis=1)))
    normalize_grid(g)
    return g


# ═══════════════════════════════════════════════════════════════════
# 1. Axis
# ═══════════════════════════════════════════════════════════════════

class TestAxis:

    def test_non_periodic_includes_both_ends(self):
        a = Axis("s1", -1.0, 1.0, 4)
        assert a.npoints == 5
        assert a.dx == pytest.approx(0.5)
        np.testing.assert_allclose(a.coordinates(), [-1.0, -0.5, 0.0, 0.5, 1.0])

    def test_periodic_excludes_upper_end(self):
        a = Axis("phi", 0.0, 4.0, 4, periodic=True)
        assert a.npoints == 4
        np.testing.assert_allclose(a.coordinates(), [0.0, 1.0, 2.0, 3.0])

    def test_quadrature_weights_sum_to_length(self):
        for periodic in (False, True):
            a = Axis("s", -2.0, 3.0, 10, periodic)
            assert np.sum(a.quadrature_weights()) == pytest.approx(5.0)

    def test_trapezoid_halves_the_ends(self):
        w = Axis("s", 0.0, 1.0, 4).quadrature_weights()
        assert w[0] == pytest.approx(0.125)
        assert w[-1] == pytest.approx(0.125)
        assert w[2] == pytest.approx(0.25)

    def test_index_of_nearest(self):
        a = Axis("s", 0.0, 1.0, 10)
        assert a.index_of(0.0) == 0
        assert a.index_of(0.34) == 3
        assert a.index_of(1.0) == 10

    def test_index_of_outside_raises(self):
        with pytest.raises(IndexError):
            Axis("s", 0.0, 1.0, 10).index_of(1.5)

    def test_periodic_index_wraps(self):
        assert Axis("phi", 0.0, 1.0, 4, periodic=True).index_of(1.0) == 0

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            Axis("s", 1.0, 1.0, 4)
        with pytest.raises(ValueError):
            Axis("s", 0.0, 1.0, 0)


# ═══════════════════════════════════════════════════════════════════
# 2. Grid
# ═══════════════════════════════════════════════════════════════════

class TestGridLayout:

    def test_shape_and_size(self, grid_2d):
        assert grid_2d.shape == (3, 3)
        assert grid_2d.size == 9
        assert grid_2d.dimension == 2
        assert grid_2d.arg_names == ["s1", "s2"]

    def test_first_axis_varies_fastest(self, grid_2d):
        np.testing.assert_allclose(grid_2d.point(0), [0.0, 0.0])
        np.testing.assert_allclose(grid_2d.point(1), [0.5, 0.0])
        np.testing.assert_allclose(grid_2d.point(3), [0.0, 1.0])

    def test_points_match_point(self, grid_2d):
        pts = grid_2d.points()
        assert pts.shape == (9, 2)
        for i in range(grid_2d.size):
            np.testing.assert_allclose(pts[i], grid_2d.point(i))

    def test_index_of_inverts_point(self, grid_2d):
        for i in range(grid_2d.size):
            assert grid_2d.index_of(grid_2d.point(i)) == i

    def test_as_array_axis_order(self, grid_2d):
        grid_2d.set_values(np.arange(9.0))
        arr = grid_2d.as_array()
        assert arr[1, 0] == 1.0
        assert arr[0, 1] == 3.0

    def test_bounds(self, grid_2d):
        names, mins, maxs, nbins, periodic = grid_2d.bounds()
        assert names == ["s1", "s2"]
        assert maxs == [1.0, 2.0]
        assert nbins == [2, 2]
        assert periodic == [False, False]

    def test_duplicate_axis_names(self):
        with pytest.raises(ValueError):
            Grid.from_bounds("g", ["s", "s"], [0, 0], [1, 1], [2, 2])

    def test_parameter_length_mismatch(self):
        with pytest.raises(ValueError):
            Grid.from_bounds("g", ["s1", "s2"], [0], [1, 1], [2, 2])


class TestGridValues:

    def test_value_and_set_value(self, grid_2d):
        grid_2d.set_value(4, 2.5)
        assert grid_2d.value(4) == 2.5
        assert grid_2d.value_at([0.5, 1.0]) == 2.5

    def test_out_of_range_index(self, grid_2d):
        with pytest.raises(IndexError):
            grid_2d.value(9)
        with pytest.raises(IndexError):
            grid_2d.set_value(-1, 0.0)

    def test_set_values_wrong_size(self, grid_2d):
        with pytest.raises(ValueError):
            grid_2d.set_values(np.ones(4))

    def test_iteration(self, grid_2d):
        grid_2d.set_values(np.arange(9.0))
        rows = list(grid_2d)
        assert len(rows) == 9
        index, point, value = rows[5]
        assert index == 5 and value == 5.0
        np.testing.assert_allclose(point, [1.0, 1.0])

    def test_scale_and_clear(self, grid_2d):
        grid_2d.set_values(np.ones(9))
        grid_2d.scale(3.0)
        assert grid_2d.max_value() == 3.0
        grid_2d.clear()
        assert grid_2d.max_value() == 0.0

    def test_set_min_to_zero_ignores_infinities(self, grid_2d):
        v = np.full(9, 2.0)
        v[0] = np.inf
        v[4] = 1.5
        grid_2d.set_values(v)
        grid_2d.set_min_to_zero()
        assert grid_2d.value(4) == 0.0
        assert grid_2d.value(1) == pytest.approx(0.5)
        assert np.isinf(grid_2d.value(0))

    def test_copy_is_independent(self, grid_2d):
        c = grid_2d.copy("other")
        c.set_value(0, 7.0)
        assert grid_2d.value(0) == 0.0
        assert c.name == "other"
        assert c.same_shape(grid_2d)


# ═══════════════════════════════════════════════════════════════════
# 3. Projection
# ═══════════════════════════════════════════════════════════════════

class TestProjection:

    def test_constant_projects_to_dropped_length(self):
        g = Grid.from_bounds("g", ["s1", "s2"], [0, 0], [1, 2], [4, 4])
        g.set_values(np.ones(g.size))
        p = g.project(["s1"])
        assert p.arg_names == ["s1"]
        assert p.size == 5
        np.testing.assert_allclose(p.values, 2.0)

    def test_projection_preserves_mass(self, gaussian_2d):
        for arg in ("s1", "s2"):
            assert integrate_grid(gaussian_2d.project([arg])) == pytest.approx(1.0, abs=1e-12)

    def test_projection_order_follows_arguments(self):
        g = Grid.from_bounds("g", ["a", "b", "c"], [0, 0, 0], [1, 1, 1], [2, 3, 4])
        g.set_values(np.random.default_rng(0).random(g.size))
        p = g.project(["c", "a"])
        assert p.arg_names == ["c", "a"]
        assert p.shape == (5, 3)
        assert integrate_grid(p) == pytest.approx(integrate_grid(g))

    def test_unknown_axis(self, grid_2d):
        with pytest.raises(ValueError):
            grid_2d.project(["s3"])

    def test_all_axes_rejected(self, grid_2d):
        with pytest.raises(ValueError):
            grid_2d.project(["s1", "s2"])

    def test_repeated_axis_rejected(self, grid_2d):
        with pytest.raises(ValueError):
            grid_2d.project(["s1", "s1"])


# ═══════════════════════════════════════════════════════════════════
# 4. Integration
# ═══════════════════════════════════════════════════════════════════

class TestIntegration:

    def test_constant_gives_area(self):
        g = Grid.from_bounds("g", ["s1", "s2"], [0.0, -1.0], [2.0, 1.0], [10, 7])
        g.set_values(np.ones(g.size))
        assert integrate_grid(g) == pytest.approx(4.0)

    def test_trapezoid_exact_for_linear(self):
        g = Grid.from_bounds("g", ["s1"], [0.0], [1.0], [7])
        g.set_values(g.points()[:, 0])
        assert integrate_grid(g) == pytest.approx(0.5)

    def test_periodic_weights_uniform(self):
        g = Grid.from_bounds("g", ["phi"], [0.0], [2.0], [8], [True])
        np.testing.assert_allclose(integration_weights(g), 0.25)

    def test_weights_follow_traversal_order(self, grid_2d):
        w = integration_weights(grid_2d)
        # corner (0, 0): 0.25 * 0.5; edge (1, 0): 0.5 * 0.5; centre: 0.5 * 1.0
        assert w[0] == pytest.approx(0.125)
        assert w[1] == pytest.approx(0.25)
        assert w[4] == pytest.approx(0.5)

    def test_normalize_returns_mass(self):
        g = Grid.from_bounds("g", ["s1"], [0.0], [1.0], [4])
        g.set_values(np.full(5, 3.0))
        assert normalize_grid(g) == pytest.approx(3.0)
        assert integrate_grid(g) == pytest.approx(1.0)

    def test_normalize_zero_mass(self):
        g = Grid.from_bounds("g", ["s1"], [0.0], [1.0], [4])
        with pytest.raises(NormalizationFailureError, match="cannot normalize"):
            normalize_grid(g)
        np.testing.assert_array_equal(g.values, 0.0)
