import numbers
from collections import namedtuple

import numpy as np
from numpy.polynomial.hermite import hermgauss
from scipy import stats
from scipy.special import expit, logsumexp
from scipy.optimize import minimize_scalar, minimize
from sklearn.linear_model import LogisticRegression

__all__ = [
    "InvalidArgument", "NumericalDivergence", "DegenerateData",
    "SimulatedDataset", "LogisticFit", "QuadratureResult",
    "simulate", "log_likelihood",
    "fit", "fit_fixed_intercept",
    "log_abf",
    "gh_rule", "gh_quadrature", "make_log_kernel", "find_mode",
    "log_bf", "log_bf_fixed_intercept",
    "DEFAULT_NODES", "MODE_SEARCH_BOUNDS", "MAX_ITER", "FIT_TOL",
]

DEFAULT_NODES = 16
MODE_SEARCH_BOUNDS = (-100.0, 100.0)
MAX_ITER = 1000
FIT_TOL = 1e-8


class InvalidArgument(ValueError):
    """An argument is outside the domain of the computation."""


class NumericalDivergence(RuntimeError):
    """An optimiser or quadrature step failed to produce a usable value."""


class DegenerateData(RuntimeError):
    """The data separate y perfectly, so the slope MLE is infinite."""


SimulatedDataset = namedtuple("SimulatedDataset", ["x", "y", "logit"])

# b0hat is None for a fixed-intercept fit; b0 is None for a free-intercept fit
LogisticFit = namedtuple("LogisticFit", ["b0hat", "bhat", "std", "b0"])

QuadratureResult = namedtuple("QuadratureResult", ["logZ", "nodes", "log_weights"])


def _check_prior_variance(prior_variance):
    if not (np.isfinite(prior_variance) and prior_variance > 0):
        raise InvalidArgument(
            f"prior_variance must be positive and finite, got {prior_variance!r}")


def _check_positive_int(value, name):
    if (isinstance(value, bool) or not isinstance(value, numbers.Real)
            or not np.isfinite(value) or int(value) != value or value < 1):
        raise InvalidArgument(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def _check_nodes(m):
    return _check_positive_int(m, "node count m")


def _as_xy(x, y):
    """Validate and convert a covariate/response pair to float arrays."""
    x = np.asarray(x, dtype=np.float64).ravel()
    y = np.asarray(y, dtype=np.float64).ravel()
    if x.size == 0:
        raise InvalidArgument("x and y must be non-empty")
    if x.shape != y.shape:
        raise InvalidArgument(
            f"x and y must have the same length, got {x.size} and {y.size}")
    for name, arr in [("x", x), ("y", y)]:
        if not np.all(np.isfinite(arr)):
            n_bad = int((~np.isfinite(arr)).sum())
            raise InvalidArgument(f"{name} contains {n_bad} non-finite values (NaN/Inf)")
    if not np.all((y == 0) | (y == 1)):
        raise InvalidArgument(
            f"y must be binary (0/1), got unique values: {np.unique(y)}")
    return x, y


def _check_separation(x, y, b0=None):
    """Raise DegenerateData if the slope MLE does not exist.

    With a free intercept the slope diverges when y is constant or when a
    threshold on x splits cases from controls (ties at the threshold
    included).  With the intercept held fixed, the offset cannot move the
    threshold, so the slope diverges only when the sign of x splits them.
    """
    cases = x[y == 1]
    ctrls = x[y == 0]
    if b0 is None:
        if cases.size == 0 or ctrls.size == 0:
            raise DegenerateData(
                f"all {y.size} responses are {int(y[0])}; intercept and slope are not identifiable")
        if cases.min() >= ctrls.max() or cases.max() <= ctrls.min():
            raise DegenerateData(
                f"x separates y (cases in [{cases.min():.4g}, {cases.max():.4g}], "
                f"controls in [{ctrls.min():.4g}, {ctrls.max():.4g}]); slope MLE is infinite")
    else:
        if ((np.all(cases >= 0) and np.all(ctrls <= 0))
                or (np.all(cases <= 0) and np.all(ctrls >= 0))):
            raise DegenerateData(
                f"sign of x separates y with intercept fixed at {b0}; slope MLE is infinite")


def _std_from_variance(var):
    if not (np.isfinite(var) and var > 0):
        raise NumericalDivergence(
            f"estimated slope variance is not positive and finite: {var!r}")
    return float(np.sqrt(var))


def simulate(n, b0, b, rng=None):
    """Simulate covariates and binary responses from a logistic model.

    Parameters
    ----------
    n : int
        Sample size.
    b0, b : float
        True intercept and slope.
    rng : numpy.random.Generator, int or None
        Random source.  An int is used as a seed; None draws fresh entropy.

    Returns
    -------
    SimulatedDataset
        ``x`` ~ N(0, 1), ``logit = b0 + b * x`` and ``y`` ~ Bernoulli(expit(logit)).
    """
    n = _check_positive_int(n, "sample size n")
    rng = np.random.default_rng(rng)
    x = rng.standard_normal(n)
    logit = b0 + b * x
    y = rng.binomial(1, expit(logit)).astype(np.float64)
    return SimulatedDataset(x=x, y=y, logit=logit)


def log_likelihood(x, y, b0, b):
    """Binomial log-likelihood sum[y*psi - log(1 + exp(psi))], psi = b0 + b*x.

    ``b`` may be an array, in which case one value is returned per element.
    """
    b = np.asarray(b, dtype=np.float64)
    psi = b0 + np.multiply.outer(b, x)
    return np.sum(y * psi - np.logaddexp(0.0, psi), axis=-1)


def fit(x, y, max_iter=MAX_ITER, tol=FIT_TOL):
    """Maximum-likelihood logistic regression of y on x with a free intercept.

    The standard error of the slope is the square root of the (slope, slope)
    entry of the inverse Fisher information at the optimum.

    Parameters
    ----------
    x, y : array-like (N,)
        Covariate and binary outcome.
    max_iter : int
        Iteration cap for the L-BFGS optimiser.
    tol : float
        Gradient tolerance.

    Returns
    -------
    LogisticFit
        With ``b0hat``, ``bhat`` and ``std`` set and ``b0=None``.
    """
    x, y = _as_xy(x, y)
    _check_separation(x, y)
    model = LogisticRegression(C=np.inf, solver="lbfgs", max_iter=max_iter, tol=tol)
    model.fit(x.reshape(-1, 1), y.astype(int))
    if int(np.max(model.n_iter_)) >= max_iter:
        raise NumericalDivergence(
            f"logistic regression did not converge in {max_iter} iterations")
    b0hat = float(model.intercept_[0])
    bhat = float(model.coef_[0, 0])
    if not (np.isfinite(b0hat) and np.isfinite(bhat)):
        raise NumericalDivergence(f"non-finite estimates b0hat={b0hat}, bhat={bhat}")

    p = expit(b0hat + bhat * x)
    w = p * (1.0 - p)
    info = np.array([[np.sum(w), np.sum(w * x)],
                     [np.sum(w * x), np.sum(w * x * x)]])
    try:
        cov = np.linalg.inv(info)
    except np.linalg.LinAlgError as e:
        raise NumericalDivergence(f"Fisher information is singular: {e}") from e
    return LogisticFit(b0hat=b0hat, bhat=bhat, std=_std_from_variance(cov[1, 1]), b0=None)


def fit_fixed_intercept(x, y, b0, max_iter=MAX_ITER, tol=FIT_TOL):
    """Maximum-likelihood slope with the intercept held at ``b0`` as an offset.

    Parameters
    ----------
    x, y : array-like (N,)
        Covariate and binary outcome.
    b0 : float
        Fixed intercept (not estimated).
    max_iter : int
        Iteration cap for L-BFGS-B.
    tol : float
        Gradient tolerance.

    Returns
    -------
    LogisticFit
        With ``bhat``, ``std`` and ``b0`` set and ``b0hat=None``.  ``std`` is
        the inverse square root of the observed information at ``bhat``.
    """
    x, y = _as_xy(x, y)
    if not np.isfinite(b0):
        raise InvalidArgument(f"fixed intercept b0 must be finite, got {b0!r}")
    b0 = float(b0)
    _check_separation(x, y, b0=b0)

    def objective(beta):
        psi = b0 + x * beta[0]
        nll = np.sum(np.logaddexp(0.0, psi) - y * psi)
        grad = np.sum((expit(psi) - y) * x)
        return nll, np.array([grad])

    res = minimize(objective, np.zeros(1), method="L-BFGS-B", jac=True,
                   options={"maxiter": max_iter, "gtol": tol, "ftol": 1e-15})
    bhat = float(res.x[0])
    # status 1: iteration or evaluation limit reached
    if res.status == 1 or not np.isfinite(bhat):
        raise NumericalDivergence(
            f"fixed-intercept fit did not converge: {res.message}")

    p = expit(b0 + bhat * x)
    info = np.sum(p * (1.0 - p) * x * x)
    var = 1.0 / info if info > 0 else np.inf
    return LogisticFit(b0hat=None, bhat=bhat, std=_std_from_variance(var), b0=b0)


def log_abf(fit, prior_variance):
    """Wakefield's asymptotic log Bayes factor for the slope.

    log N(bhat; 0, sqrt(std^2 + V)) - log N(bhat; 0, std): the marginal
    likelihood of bhat under a N(0, V) prior on the true slope, relative to
    its likelihood at slope 0, with bhat ~ N(slope, std^2).

    Parameters
    ----------
    fit : LogisticFit
        Free- or fixed-intercept fit; only ``bhat`` and ``std`` are used.
    prior_variance : float
        Prior variance V of the slope.

    Returns
    -------
    float
    """
    _check_prior_variance(prior_variance)
    bhat, std = fit.bhat, fit.std
    if not (np.isfinite(bhat) and np.isfinite(std) and std > 0):
        raise InvalidArgument(
            f"fit must have finite bhat and positive finite std, got bhat={bhat!r}, std={std!r}")
    return float(stats.norm.logpdf(bhat, 0.0, np.sqrt(std**2 + prior_variance))
                 - stats.norm.logpdf(bhat, 0.0, std))


def gh_rule(mu, tau, m=DEFAULT_NODES):
    """Adaptive Gauss-Hermite rule for a Normal(mu, 1/tau) reference.

    Nodes are b_k = mu + sqrt(2/tau) t_k for the Hermite roots t_k, and the
    log-weights absorb the Jacobian and exp(t_k^2), so that
    ``logsumexp(log_weights + f(nodes))`` approximates log of the integral
    of exp(f(b)) db.  The rule is exact for Gaussian kernels.

    Returns
    -------
    nodes, log_weights : ndarray (m,)
    """
    m = _check_nodes(m)
    if not (np.isfinite(tau) and tau > 0):
        raise InvalidArgument(f"precision tau must be positive and finite, got {tau!r}")
    t, w = hermgauss(m)
    scale = np.sqrt(2.0 / tau)
    nodes = mu + scale * t
    with np.errstate(divide="ignore"):
        log_weights = np.log(w) + t**2 + np.log(scale)
    return nodes, log_weights


def gh_quadrature(log_kernel, tau, mu, m=DEFAULT_NODES):
    """Log normalising constant of exp(log_kernel) by adaptive Gauss-Hermite.

    Parameters
    ----------
    log_kernel : callable
        Vectorised log of the integrand.
    tau, mu : float
        Precision and location of the Laplace approximation used to place
        the nodes.
    m : int
        Number of nodes.  m=1 gives the Laplace approximation.

    Returns
    -------
    QuadratureResult
    """
    nodes, log_weights = gh_rule(mu, tau, m)
    logZ = float(logsumexp(log_weights + np.asarray(log_kernel(nodes))))
    if not np.isfinite(logZ):
        raise NumericalDivergence(f"quadrature produced non-finite logZ={logZ}")
    return QuadratureResult(logZ=logZ, nodes=nodes, log_weights=log_weights)


def make_log_kernel(x, y, prior_variance, b0=None):
    """Build the log posterior kernel of the slope.

    llfun(b) = log_likelihood(x, y, b0, b) + log N(b; 0, sqrt(V)).

    If ``b0`` is given the intercept is held there and the fixed-intercept
    fit is returned; otherwise the free-intercept fit supplies ``b0hat``,
    which is then held fixed.

    Returns
    -------
    llfun : callable
        Vectorised over b.
    fit : LogisticFit
    """
    _check_prior_variance(prior_variance)
    x, y = _as_xy(x, y)
    if b0 is None:
        fit_ = fit(x, y)
        intercept = fit_.b0hat
    else:
        fit_ = fit_fixed_intercept(x, y, b0)
        intercept = fit_.b0
    prior_sd = np.sqrt(prior_variance)

    def llfun(b):
        return log_likelihood(x, y, intercept, b) + stats.norm.logpdf(b, 0.0, prior_sd)

    return llfun, fit_


def find_mode(log_kernel, bounds=MODE_SEARCH_BOUNDS, max_iter=MAX_ITER):
    """Maximise a concave one-dimensional log kernel by bounded Brent search."""
    lo, hi = bounds
    res = minimize_scalar(lambda b: -float(log_kernel(b)), bounds=(lo, hi),
                          method="bounded", options={"maxiter": max_iter, "xatol": 1e-10})
    if not res.success:
        raise NumericalDivergence(f"mode search did not converge: {res.message}")
    mode = float(res.x)
    edge = 1e-6 * (hi - lo)
    if mode - lo < edge or hi - mode < edge:
        raise NumericalDivergence(
            f"mode {mode:.6g} lies on the search boundary [{lo}, {hi}]")
    return mode


def _laplace_reference(llfun, x, intercept, prior_variance, bounds, max_iter):
    """Posterior mode of the slope and the kernel's curvature there."""
    mu = find_mode(llfun, bounds=bounds, max_iter=max_iter)
    p = expit(intercept + x * mu)
    tau = float(np.sum(p * (1.0 - p) * x * x) + 1.0 / prior_variance)
    if not (np.isfinite(tau) and tau > 0):
        raise NumericalDivergence(f"curvature at the mode is not positive: tau={tau!r}")
    return mu, tau


def log_bf_fixed_intercept(x, y, b0, prior_variance, m=DEFAULT_NODES,
                           bounds=MODE_SEARCH_BOUNDS, max_iter=MAX_ITER):
    """Log Bayes factor for slope != 0 with the intercept fixed at ``b0``.

    The fixed-intercept fit must exist (no sign separation).  The kernel
    is integrated by Gauss-Hermite quadrature centred at its posterior
    mode with the kernel's curvature as precision, and compared with the
    kernel at slope 0.  With small n and a large slope the prior pulls
    the mode well away from the MLE, so nodes placed at (bhat, 1/std^2)
    would need many more points for the same accuracy.
    """
    m = _check_nodes(m)
    x, y = _as_xy(x, y)
    llfun, fit_ = make_log_kernel(x, y, prior_variance, b0=b0)
    mu, tau = _laplace_reference(llfun, x, fit_.b0, prior_variance, bounds, max_iter)
    quad = gh_quadrature(llfun, tau=tau, mu=mu, m=m)
    return float(quad.logZ - llfun(0.0))


def log_bf(x, y, prior_variance, m=DEFAULT_NODES,
           bounds=MODE_SEARCH_BOUNDS, max_iter=MAX_ITER):
    """Log Bayes factor for slope != 0 with the intercept estimated.

    The intercept is held at its free-fit MLE ``b0hat``.  Nodes are placed
    at the posterior mode of the slope with precision
    sum[p(1-p) x^2] + 1/V.  The null log-likelihood uses the sample
    proportion mean(y) as the success probability, i.e. the intercept is
    re-estimated under slope 0.  This is an approximation to a fully
    profiled null, not an identity.

    Parameters
    ----------
    x, y : array-like (N,)
        Covariate and binary outcome.
    prior_variance : float
        Prior variance V of the slope.
    m : int
        Number of quadrature nodes.
    bounds : (float, float)
        Search interval for the posterior mode.
    max_iter : int
        Iteration cap for the mode search.

    Returns
    -------
    float
    """
    m = _check_nodes(m)
    x, y = _as_xy(x, y)
    llfun, fit_ = make_log_kernel(x, y, prior_variance)
    mu, tau = _laplace_reference(llfun, x, fit_.b0hat, prior_variance, bounds, max_iter)
    quad = gh_quadrature(llfun, tau=tau, mu=mu, m=m)
    null = float(np.sum(stats.binom.logpmf(y, 1, np.mean(y))))
    return float(quad.logZ - null)
