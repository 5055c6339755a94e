"""Tests for src/carving.py — quantile carving end to end."""

import sys
import threading
from pathlib import Path

import numpy as np
import pytest
from scipy.optimize import OptimizeResult

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

import carving
from analysis import check_descent
from carving import (
    CarveOptions,
    SolveDiagnostics,
    SplitMode,
    plan_leaf_tasks,
    quantcarve,
)
from network import StreamNetwork
from synthetic import concave_profile, disjoint_union, linear_chain, random_tree, y_network


# ---------------------------------------------------------------------------
# Helper: solver stub that fails on selected programme sizes
# ---------------------------------------------------------------------------

def _failing_solver(monkeypatch, fail_sizes, calls=None):
    real_solve = carving.solve_program
    lock = threading.Lock()

    def solve(program, options=None):
        if calls is not None:
            with lock:
                calls.append(program.n)
        if program.n in fail_sizes:
            return OptimizeResult(
                x=None, status=2, success=False, message="The problem is infeasible.",
                nit=0, fun=None,
            )
        return real_solve(program, options)

    monkeypatch.setattr(carving, "solve_program", solve)


# ---------------------------------------------------------------------------
# Tests: options
# ---------------------------------------------------------------------------

class TestOptions:

    @pytest.mark.parametrize("value, expected", [
        (True, SplitMode.FULL),
        (False, SplitMode.NONE),
        ("trunk", SplitMode.TRUNK),
        ("FULL", SplitMode.FULL),
        (SplitMode.NONE, SplitMode.NONE),
    ])
    def test_split_coercion(self, value, expected):
        assert CarveOptions(split=value).split is expected

    def test_unknown_split(self):
        with pytest.raises(ValueError, match="split"):
            CarveOptions(split="basins-only")

    def test_unknown_pool(self):
        with pytest.raises(ValueError, match="pool"):
            CarveOptions(pool="gpu")

    def test_bad_max_workers(self):
        with pytest.raises(ValueError, match="max_workers"):
            CarveOptions(max_workers=0)

    def test_negative_mingradient(self):
        with pytest.raises(ValueError, match="mingradient"):
            CarveOptions(mingradient=-0.1)


# ---------------------------------------------------------------------------
# Tests: planning
# ---------------------------------------------------------------------------

class TestPlanLeafTasks:

    def test_none_is_single_leaf(self):
        S = y_network(6, 2, junction=3)
        leaves = plan_leaf_tasks(S, SplitMode.NONE)
        assert len(leaves) == 1
        assert leaves[0].part.label == "network"

    def test_trunk_before_tributaries(self):
        S = y_network(6, 2, junction=3)
        leaves = plan_leaf_tasks(S, SplitMode.TRUNK)
        assert [leaf.part.label for leaf in leaves] == ["network/trunk", "network/tributary 0"]
        assert leaves[0].depends_on is None
        assert leaves[1].depends_on == 0
        assert leaves[1].fixed_outlet is True

    def test_full_split_over_basins(self, two_basins):
        S, _ = two_basins
        leaves = plan_leaf_tasks(S, SplitMode.FULL)
        assert [leaf.part.label for leaf in leaves] == [
            "network/basin 0",
            "network/basin 1/trunk",
            "network/basin 1/tributary 0",
        ]
        assert leaves[2].depends_on == 1

    def test_single_basin_full_split_goes_to_trunk_level(self):
        leaves = plan_leaf_tasks(y_network(6, 2, junction=3), SplitMode.FULL)
        assert leaves[0].part.label == "network/trunk"


# ---------------------------------------------------------------------------
# Tests: solving
# ---------------------------------------------------------------------------

class TestQuantcarve:

    def test_single_edge_pass_through(self):
        S = linear_chain(2, dx=10.0)
        z = np.array([105.0, 100.0])
        zs, diags = quantcarve(S, z, 0.5)
        np.testing.assert_allclose(zs, z, atol=1e-5)
        assert zs[1] == pytest.approx(100.0, abs=1e-5)
        assert zs[0] <= 105.0 + 1e-5
        assert len(diags) == 1 and diags[0].success

    def test_spike_pulled_down(self, spike_chain):
        S, z = spike_chain
        zs, _ = quantcarve(S, z, 0.5)
        assert zs[2] < 110.0 - 1.0
        assert zs[2] <= 100.0 + 1e-5
        assert np.all(np.diff(zs) <= 1e-5)
        np.testing.assert_allclose(zs[[0, 3, 4]], [100.0, 90.0, 85.0], atol=1e-5)

    @pytest.mark.parametrize("split", [SplitMode.FULL, SplitMode.TRUNK, SplitMode.NONE])
    def test_monotone_descent(self, split):
        S = random_tree(80, dx=10.0, seed=5)
        z = concave_profile(S, noise=5.0, seed=11)
        zs, diags = quantcarve(S, z, 0.5, split=split, mingradient=0.01)
        assert all(d.success for d in diags)
        assert np.all(np.isfinite(zs))
        assert check_descent(S, zs, mingradient=0.01, atol=1e-5)

    def test_quantile_ordering(self):
        S = linear_chain(60, dx=10.0)
        z = concave_profile(S, noise=4.0, seed=2)
        zs10, _ = quantcarve(S, z, 0.1)
        zs90, _ = quantcarve(S, z, 0.9)
        assert np.all(zs10 <= zs90 + 1e-5)
        assert np.mean(zs90 - zs10) > 0

    def test_basin_split_matches_single_solve(self, two_basins):
        S, z = two_basins
        zs_full, diags_full = quantcarve(S, z, 0.37, split=SplitMode.FULL)
        # when data already descend, every decomposition reproduces them
        z_desc = concave_profile(S, z_outlet=50.0, relief=100.0, length_scale=80.0)
        a, _ = quantcarve(S, z_desc, 0.37, split=SplitMode.FULL)
        b, _ = quantcarve(S, z_desc, 0.37, split=SplitMode.NONE)
        np.testing.assert_allclose(a, b, atol=1e-5)
        np.testing.assert_allclose(a, z_desc, atol=1e-5)
        assert len(diags_full) == 3

    def test_independent_basins_match_whole_network(self):
        S1 = linear_chain(15, dx=10.0)
        S2 = linear_chain(9, dx=10.0)
        S = disjoint_union(S1, S2)
        z = concave_profile(S, noise=3.0, seed=8)
        zs_split, diags = quantcarve(S, z, 0.37, split=SplitMode.FULL)
        zs_whole, _ = quantcarve(S, z, 0.37, split=SplitMode.NONE)
        np.testing.assert_allclose(zs_split, zs_whole, atol=1e-4)
        assert [d.label for d in diags] == ["network/basin 0", "network/basin 1"]

    def test_idempotent(self, two_basins):
        S, z = two_basins
        a, da = quantcarve(S, z, 0.5)
        b, db = quantcarve(S, z, 0.5)
        np.testing.assert_array_equal(a, b)
        assert [d.label for d in da] == [d.label for d in db]

    def test_inputs_not_mutated(self, two_basins):
        S, z = two_basins
        z_before = z.copy()
        quantcarve(S, z, 0.5)
        np.testing.assert_array_equal(z, z_before)

    @pytest.mark.parametrize("pool", ["thread", "serial"])
    def test_pools_agree(self, two_basins, pool):
        S, z = two_basins
        ref, _ = quantcarve(S, z, 0.5, pool="serial")
        zs, _ = quantcarve(S, z, 0.5, pool=pool, max_workers=2)
        np.testing.assert_array_equal(zs, ref)

    def test_options_object(self, spike_chain):
        S, z = spike_chain
        opts = CarveOptions(mingradient=0.05, split=False)
        zs, diags = quantcarve(S, z, 0.5, options=opts)
        assert check_descent(S, zs, mingradient=0.05, atol=1e-5)
        assert diags[0].label == "network"

    def test_raster_input(self, synthetic_flow_direction, synthetic_dem):
        S = StreamNetwork.from_d8(synthetic_flow_direction)
        zs, diags = quantcarve(S, synthetic_dem, 0.5)
        assert zs.shape == (S.n_nodes,)
        assert np.all(np.isfinite(zs))
        assert check_descent(S, zs, atol=1e-5)

    def test_empty_network(self):
        zs, diags = quantcarve(StreamNetwork([], [], []), [], 0.5)
        assert zs.shape == (0,)
        assert diags == []


class TestJunctionBoundary:
    """Tributaries start from the trunk's fitted elevation, not the raw one."""

    def test_tributary_uses_fitted_trunk_elevation(self, junction_network):
        S, z = junction_network
        zs, diags = quantcarve(S, z, 0.37)
        # the raw spike at the junction (145) is carved down to 125
        assert zs[3] == pytest.approx(125.0, abs=1e-5)
        # the tributary keeps its own elevations above the fitted junction
        np.testing.assert_allclose(zs[6:], [128.0, 126.0], atol=1e-5)
        assert [d.fixed_outlet for d in diags] == [False, True]

    def test_junction_matches_trunk_only_fit(self, junction_network):
        S, z = junction_network
        zs, _ = quantcarve(S, z, 0.37)
        trunk_nodes = np.arange(6)
        zt, _ = quantcarve(S.subnetwork(trunk_nodes), z[trunk_nodes], 0.37, split=False)
        np.testing.assert_allclose(zs[trunk_nodes], zt, atol=1e-5)

    def test_trunk_solved_before_tributaries(self, monkeypatch):
        S = y_network(20, 4, junction=10)
        S = disjoint_union(S, y_network(12, 3, junction=6))
        z = concave_profile(S, noise=1.0, seed=4)
        calls = []
        _failing_solver(monkeypatch, fail_sizes=(), calls=calls)
        quantcarve(S, z, 0.5, max_workers=4)
        # trunk sizes 20 and 12 are dispatched before their tributaries (5 and 4)
        assert calls.index(20) < calls.index(5)
        assert calls.index(12) < calls.index(4)


# ---------------------------------------------------------------------------
# Tests: validation and failures
# ---------------------------------------------------------------------------

class TestErrors:

    def test_nan_rejected(self, spike_chain):
        S, z = spike_chain
        z = z.copy()
        z[1] = np.nan
        with pytest.raises(ValueError, match="NaN"):
            quantcarve(S, z, 0.5)

    def test_misaligned_rejected(self, spike_chain):
        S, z = spike_chain
        with pytest.raises(ValueError, match="5 nodes"):
            quantcarve(S, z[:4], 0.5)

    @pytest.mark.parametrize("tau", [0.0, 1.0, 2.0])
    def test_tau_rejected(self, spike_chain, tau):
        S, z = spike_chain
        with pytest.raises(ValueError, match="tau"):
            quantcarve(S, z, tau)

    def test_validation_before_any_solve(self, monkeypatch, spike_chain):
        S, z = spike_chain
        calls = []
        _failing_solver(monkeypatch, fail_sizes=(), calls=calls)
        with pytest.raises(ValueError):
            quantcarve(S, z, 1.5)
        assert calls == []

    def test_failed_basin_is_local(self, monkeypatch):
        S = disjoint_union(linear_chain(4), linear_chain(6))
        z = concave_profile(S, noise=1.0, seed=0)
        _failing_solver(monkeypatch, fail_sizes=(4,))
        zs, diags = quantcarve(S, z, 0.5)
        assert np.all(np.isnan(zs[:4]))
        assert np.all(np.isfinite(zs[4:]))
        assert [d.success for d in diags] == [False, True]
        assert diags[0].status == 2
        assert isinstance(diags[0], SolveDiagnostics)

    def test_failed_trunk_frees_tributary_outlet(self, monkeypatch, junction_network):
        S, z = junction_network
        _failing_solver(monkeypatch, fail_sizes=(6,))
        zs, diags = quantcarve(S, z, 0.37)
        assert np.all(np.isnan(zs[:6]))
        assert np.all(np.isfinite(zs[6:]))
        assert diags[0].success is False
        assert diags[1].success is True
        assert diags[1].fixed_outlet is False

    def test_diagnostics_carry_solver_progress(self, spike_chain):
        S, z = spike_chain
        _, diags = quantcarve(S, z, 0.5)
        d = diags[0]
        assert d.status == 0
        assert d.n_nodes == 5
        assert d.fun is not None and d.fun >= 0
