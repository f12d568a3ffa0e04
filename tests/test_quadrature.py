"""Tests for the adaptive Gauss-Hermite rule, the kernel builder and the mode search.

Run:
    pytest tests/test_quadrature.py -v
"""

from __future__ import annotations

import numpy as np
import pytest
from scipy import stats

from logisticbf import (
    DEFAULT_NODES,
    InvalidArgument,
    NumericalDivergence,
    find_mode,
    gh_quadrature,
    gh_rule,
    log_likelihood,
    make_log_kernel,
)


def _gaussian_log_kernel(c, centre, precision):
    return lambda b: c - 0.5 * precision * (np.asarray(b) - centre) ** 2


# ── TestGhQuadrature ─────────────────────────────────────────────────────────


class TestGhQuadrature:
    """The rule is exact on Gaussian kernels and accurate near them."""

    @pytest.mark.parametrize("m", [1, 2, 5, 16, 40])
    def test_gaussian_kernel_exact(self, m) -> None:
        """Reference equal to the kernel: logZ = c + log sqrt(2*pi/tau) for any m."""
        kernel = _gaussian_log_kernel(3.7, 1.2, 25.0)
        res = gh_quadrature(kernel, tau=25.0, mu=1.2, m=m)
        expected = 3.7 + 0.5 * np.log(2 * np.pi / 25.0)
        assert res.logZ == pytest.approx(expected, abs=1e-9)
        assert res.nodes.shape == (m,)
        assert res.log_weights.shape == (m,)

    def test_normal_density_integrates_to_one(self) -> None:
        """A normalised log density has logZ = 0."""
        kernel = lambda b: stats.norm.logpdf(b, 0.4, 0.3)
        res = gh_quadrature(kernel, tau=1 / 0.3**2, mu=0.4)
        assert res.logZ == pytest.approx(0.0, abs=1e-10)

    def test_misplaced_centre(self) -> None:
        """Reference centred 0.3 away from the kernel mode is still accurate."""
        kernel = _gaussian_log_kernel(0.0, 0.3, 4.0)
        res = gh_quadrature(kernel, tau=4.0, mu=0.0, m=16)
        assert res.logZ == pytest.approx(0.5 * np.log(2 * np.pi / 4.0), abs=1e-8)

    def test_misplaced_precision(self) -> None:
        """Reference precision 3 against kernel precision 4."""
        kernel = _gaussian_log_kernel(0.0, 0.0, 4.0)
        res = gh_quadrature(kernel, tau=3.0, mu=0.0, m=16)
        assert res.logZ == pytest.approx(0.5 * np.log(2 * np.pi / 4.0), abs=1e-9)

    def test_single_node_is_laplace(self) -> None:
        """m=1 gives log_kernel(mu) + log sqrt(2*pi/tau) for any kernel."""
        kernel = lambda b: np.sin(b) - np.asarray(b) ** 4
        mu, tau = 0.35, 7.0
        res = gh_quadrature(kernel, tau=tau, mu=mu, m=1)
        assert res.logZ == pytest.approx(kernel(mu) + 0.5 * np.log(2 * np.pi / tau))

    def test_default_node_count(self) -> None:
        nodes, _ = gh_rule(0.0, 1.0)
        assert nodes.shape == (DEFAULT_NODES,) == (16,)

    def test_nodes_symmetric_about_mu(self) -> None:
        nodes, log_weights = gh_rule(1.5, 4.0, 8)
        assert np.mean(nodes) == pytest.approx(1.5)
        np.testing.assert_allclose(np.sort(nodes - 1.5), -np.sort(nodes - 1.5)[::-1], atol=1e-12)
        assert np.all(np.isfinite(log_weights))

    @pytest.mark.parametrize("m", [0, -3, 2.5, np.nan, np.inf, None, "16"])
    def test_invalid_node_count(self, m) -> None:
        with pytest.raises(InvalidArgument):
            gh_rule(0.0, 1.0, m)

    @pytest.mark.parametrize("tau", [0.0, -1.0, np.inf, np.nan])
    def test_invalid_precision(self, tau) -> None:
        with pytest.raises(InvalidArgument):
            gh_quadrature(lambda b: -np.asarray(b) ** 2, tau=tau, mu=0.0)

    def test_non_finite_logz(self) -> None:
        """A kernel that is -inf at every node cannot be normalised."""
        kernel = lambda b: np.full(np.shape(b), -np.inf)
        with pytest.raises(NumericalDivergence):
            gh_quadrature(kernel, tau=1.0, mu=0.0)


# ── TestMakeLogKernel ────────────────────────────────────────────────────────


class TestMakeLogKernel:
    """The kernel is log-likelihood plus log prior, vectorised over b."""

    def test_fixed_intercept_kernel(self, moderate_data) -> None:
        x, y = moderate_data.x, moderate_data.y
        llfun, res = make_log_kernel(x, y, 2.0, b0=-1.0)
        assert res.b0 == -1.0
        expected = log_likelihood(x, y, -1.0, 0.3) + stats.norm.logpdf(0.3, 0.0, np.sqrt(2.0))
        assert llfun(0.3) == pytest.approx(expected)

    def test_free_intercept_kernel_uses_b0hat(self, moderate_data) -> None:
        x, y = moderate_data.x, moderate_data.y
        llfun, res = make_log_kernel(x, y, 1.0)
        assert res.b0 is None
        expected = log_likelihood(x, y, res.b0hat, 0.2) + stats.norm.logpdf(0.2)
        assert llfun(0.2) == pytest.approx(expected)

    def test_vectorised(self, moderate_data) -> None:
        x, y = moderate_data.x, moderate_data.y
        llfun, _ = make_log_kernel(x, y, 1.0, b0=-1.0)
        b = np.array([-0.5, 0.0, 0.5])
        vals = llfun(b)
        assert vals.shape == (3,)
        np.testing.assert_allclose(vals, [llfun(v) for v in b])

    def test_large_slopes_do_not_overflow(self, moderate_data) -> None:
        x, y = moderate_data.x, moderate_data.y
        llfun, _ = make_log_kernel(x, y, 1.0, b0=-1.0)
        vals = llfun(np.array([-80.0, 80.0]))
        assert np.all(np.isfinite(vals))

    def test_invalid_prior_variance(self, moderate_data) -> None:
        with pytest.raises(InvalidArgument):
            make_log_kernel(moderate_data.x, moderate_data.y, 0.0, b0=-1.0)


# ── TestFindMode ─────────────────────────────────────────────────────────────


class TestFindMode:
    """Bounded one-dimensional mode search."""

    def test_quadratic(self) -> None:
        assert find_mode(lambda b: -(b - 2.0) ** 2) == pytest.approx(2.0, abs=1e-6)

    def test_mode_outside_bounds(self) -> None:
        """An increasing kernel has its supremum on the boundary."""
        with pytest.raises(NumericalDivergence):
            find_mode(lambda b: b, bounds=(-1.0, 1.0))

    def test_posterior_mode_between_zero_and_mle(self, moderate_data) -> None:
        """A N(0, V) prior pulls the mode from the MLE toward zero."""
        x, y = moderate_data.x, moderate_data.y
        llfun, res = make_log_kernel(x, y, 1.0, b0=-1.0)
        mode = find_mode(llfun)
        assert 0.0 < mode < res.bhat
        assert mode == pytest.approx(res.bhat, abs=0.05)
