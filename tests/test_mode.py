"""Tests for the mode and Hessian stages."""

import os

import numpy as np
import pytest

from conftest import QuadraticModel
from dsge_estimation.model import PosteriorEvaluation
from dsge_estimation.data_loader import load_array, save_array
from dsge_estimation.mode import (
    ModeSource,
    OptimizationResult,
    ScipyModeOptimizer,
    build_proposal,
    find_mode,
    numerical_hessian,
    resolve_hessian,
    resolve_mode,
)


class ScriptedOptimizer:
    """Reports the iteration limit as hit for the first n_unconverged calls."""

    def __init__(self, n_unconverged, step=1.0):
        self.n_unconverged = n_unconverged
        self.step = step
        self.calls = []

    def optimize(self, initial_guess, data, tolerance, max_iterations):
        self.calls.append((np.array(initial_guess), tolerance, max_iterations))
        converged = len(self.calls) > self.n_unconverged
        iterations = 7 if converged else max_iterations
        mode = np.asarray(initial_guess) + self.step
        return OptimizationResult(mode, converged, iterations, -float(len(self.calls)))


class BoundedQuadraticModel(QuadraticModel):
    """Quadratic model that is infeasible outside its parameter bounds; records every point."""

    def __init__(self, bounds, **kwargs):
        super().__init__(n_params=len(bounds), **kwargs)
        for p, b in zip(self.parameters, bounds):
            p.bounds = b
        self.points = []

    def posterior(self, params, data):
        self.points.append(np.array(params, dtype=float))
        lower, upper = self.bounds.T
        if np.any(params < lower) or np.any(params > upper):
            return PosteriorEvaluation.infeasible()
        return super().posterior(params, data)


class TestFindMode:

    def test_repeats_until_converged(self, make_settings, quadratic_model, capsys):
        settings = make_settings(optimization_iterations=50)
        optimizer = ScriptedOptimizer(n_unconverged=2)

        mode, info = find_mode(quadratic_model, None, np.zeros(2), settings, optimizer)

        assert info['n_calls'] == 3
        assert info['total_iterations'] == 50 + 50 + 7
        np.testing.assert_array_equal(mode, [3.0, 3.0])
        # Each call starts where the previous one stopped
        np.testing.assert_array_equal(optimizer.calls[1][0], [1.0, 1.0])
        np.testing.assert_array_equal(optimizer.calls[2][0], [2.0, 2.0])
        assert all(call[1] == settings.optimization_tol for call in optimizer.calls)
        assert all(call[2] == 50 for call in optimizer.calls)

        out = capsys.readouterr().out
        assert out.count("Total iterations completed") == 3
        assert "Total iterations completed: 107" in out

    def test_mode_saved(self, make_settings, quadratic_model):
        settings = make_settings()
        mode, _ = find_mode(quadratic_model, None, np.zeros(2), settings,
                            ScriptedOptimizer(n_unconverged=1), verbose=0)

        saved = load_array(settings.rawpath('estimate', 'mode_out.h5'), 'mode')
        np.testing.assert_array_equal(saved, mode)
        np.testing.assert_array_equal(quadratic_model.parameter_values(), mode)

    def test_scipy_optimizer_finds_quadratic_mode(self, make_settings):
        center = np.array([0.4, -1.2, 2.0])
        model = QuadraticModel(3, center=center, precision=np.diag([1.0, 3.0, 0.5]))
        settings = make_settings(optimization_tol=1e-12)

        mode, info = find_mode(model, None, np.zeros(3), settings, verbose=0)

        np.testing.assert_allclose(mode, center, atol=1e-5)
        assert info['posterior'] == pytest.approx(0.0, abs=1e-8)

    def test_scipy_optimizer_keeps_fixed_parameters(self):
        model = QuadraticModel(3, center=np.array([1.0, 2.0, 3.0]), fixed=(1,))
        result = ScipyModeOptimizer(model).optimize(np.array([0.0, 5.0, 0.0]), None, 1e-12, 100)

        assert result.converged
        np.testing.assert_allclose(result.mode[[0, 2]], [1.0, 3.0], atol=1e-5)
        assert result.mode[1] == 5.0


class TestModeSource:

    def test_provided(self, make_settings, quadratic_model):
        settings = make_settings()
        mode = resolve_mode(ModeSource.provided([0.5, 0.25]), quadratic_model, None, settings,
                            verbose=0)
        np.testing.assert_array_equal(mode, [0.5, 0.25])
        assert not os.path.exists(settings.rawpath('estimate', 'mode_out.h5'))

    def test_from_file(self, make_settings, quadratic_model, capsys):
        settings = make_settings(reoptimize=False)
        save_array(settings.inpath('user', 'mode_in_optimized.h5'), 'mode', np.array([1.5, -1.5]))

        mode = resolve_mode(ModeSource.from_settings(settings), quadratic_model, None, settings)
        np.testing.assert_array_equal(mode, [1.5, -1.5])
        assert "Reading in previous mode" in capsys.readouterr().out

    def test_reoptimize_from_file(self, make_settings, quadratic_model):
        settings = make_settings(reoptimize=True)
        save_array(settings.inpath('user', 'mode_in.h5'), 'params', np.array([1.0, 1.0]))
        optimizer = ScriptedOptimizer(n_unconverged=0, step=-1.0)

        mode = resolve_mode(ModeSource.from_settings(settings), quadratic_model, None, settings,
                            optimizer, verbose=0)

        np.testing.assert_array_equal(optimizer.calls[0][0], [1.0, 1.0])
        np.testing.assert_array_equal(mode, [0.0, 0.0])

    def test_missing_file(self, make_settings, quadratic_model):
        settings = make_settings(reoptimize=False)
        with pytest.raises(FileNotFoundError):
            resolve_mode(ModeSource.from_settings(settings), quadratic_model, None, settings,
                         verbose=0)

    def test_invalid_source(self):
        with pytest.raises(ValueError):
            ModeSource('guess', vector=np.zeros(2))
        with pytest.raises(ValueError):
            ModeSource(ModeSource.PROVIDED)


class TestHessian:

    def test_quadratic_hessian(self):
        precision = np.array([[2.0, 0.5, 0.0], [0.5, 1.0, -0.3], [0.0, -0.3, 0.8]])
        model = QuadraticModel(3, precision=precision)

        hessian = numerical_hessian(model, np.array([0.1, -0.2, 0.3]), None, step=1e-3)
        np.testing.assert_allclose(hessian, 2 * precision, atol=1e-6)

    def test_fixed_parameter_rows_are_zero(self):
        model = QuadraticModel(3, fixed=(2,))
        hessian = numerical_hessian(model, np.zeros(3), None, step=1e-3)

        np.testing.assert_allclose(hessian[:2, :2], 2 * np.eye(2), atol=1e-6)
        np.testing.assert_array_equal(hessian[2, :], 0.0)
        np.testing.assert_array_equal(hessian[:, 2], 0.0)

    def test_recalculated_hessian_saved(self, make_settings, quadratic_model):
        settings = make_settings(recalculate_hessian=True, hessian_step=1e-3)
        hessian = resolve_hessian(quadratic_model, np.zeros(2), None, settings, verbose=0)

        saved = load_array(settings.rawpath('estimate', 'hessian.h5'), 'hessian')
        np.testing.assert_array_equal(saved, hessian)

    def test_precomputed_hessian(self, make_settings, quadratic_model):
        settings = make_settings(recalculate_hessian=False)
        save_array(settings.inpath('user', 'hessian_optimized.h5'), 'hessian', 3 * np.eye(2))

        hessian = resolve_hessian(quadratic_model, np.zeros(2), None, settings, verbose=0)
        np.testing.assert_array_equal(hessian, 3 * np.eye(2))

    @pytest.mark.parametrize("point", [[0.0, 0.3, -0.2], [1.0, 0.3, -0.2], [0.0, 0.5, -0.2]])
    def test_one_sided_at_bound(self, point):
        """At a bound the difference steps inward; only the first outward step leaves the bounds."""
        precision = np.array([[2.0, 0.5, 0.0], [0.5, 1.0, -0.3], [0.0, -0.3, 0.8]])
        bounds = [(0.0, 1.0), (-1.0, 0.5), (-np.inf, np.inf)]
        model = BoundedQuadraticModel(bounds, precision=precision)

        hessian = numerical_hessian(model, np.array(point), None, step=1e-3)

        np.testing.assert_allclose(hessian, 2 * precision, atol=1e-6)
        np.testing.assert_array_equal(hessian, hessian.T)
        inside = [np.all((x >= model.bounds[:, 0]) & (x <= model.bounds[:, 1]))
                  for x in model.points]
        assert sum(not ok for ok in inside) == 1 + (point[1] == 0.5)

    def test_no_room_on_either_side(self):
        model = BoundedQuadraticModel([(0.0, 1e-4), (-1.0, 1.0)])
        with pytest.raises(ValueError, match="either side of parameter 0"):
            numerical_hessian(model, np.array([0.0, 0.0]), None, step=1e-3)

    def test_infeasible_point(self):
        model = BoundedQuadraticModel([(0.0, 1.0), (-1.0, 1.0)])
        with pytest.raises(ValueError, match="not finite"):
            numerical_hessian(model, np.array([1.5, 0.0]), None, step=1e-3)

    def test_missing_precomputed_hessian(self, make_settings, quadratic_model):
        settings = make_settings(recalculate_hessian=False)
        with pytest.raises(FileNotFoundError):
            resolve_hessian(quadratic_model, np.zeros(2), None, settings, verbose=0)


class TestBuildProposal:

    def test_from_hessian(self, make_settings, quadratic_model):
        settings = make_settings()
        propdist = build_proposal(np.array([1.0, 2.0]), 2 * np.eye(2), quadratic_model, settings)

        assert propdist.rank == 2
        np.testing.assert_array_equal(propdist.mu, [1.0, 2.0])
        np.testing.assert_allclose(propdist.covariance(), 0.5 * np.eye(2))

    def test_rank_deficit_warns(self, make_settings, quadratic_model):
        settings = make_settings()
        with pytest.warns(UserWarning, match="rank 1"):
            propdist = build_proposal(np.zeros(2), np.diag([0.0, 2.0]), quadratic_model, settings)
        assert propdist.rank == 1

    def test_covariance_overrides_hessian(self, make_settings, quadratic_model):
        settings = make_settings()
        cov = np.array([[0.2, 0.05], [0.05, 0.1]])
        propdist = build_proposal(np.zeros(2), None, quadratic_model, settings,
                                  proposal_covariance=cov)
        np.testing.assert_allclose(propdist.covariance(), cov, atol=1e-12)
