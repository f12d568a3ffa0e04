import os
import multiprocessing as mp
from collections import namedtuple
from concurrent.futures import ProcessPoolExecutor

import numpy as np
import pandas as pd

from logisticbf import (
    DEFAULT_NODES, DegenerateData, NumericalDivergence,
    simulate, fit, fit_fixed_intercept, log_abf, log_bf, log_bf_fixed_intercept,
)

__all__ = [
    "BayesFactorResult", "run_trial", "run_experiment",
    "summarize_experiment", "scaling_summary", "print_summary",
]

BayesFactorResult = namedtuple(
    "BayesFactorResult",
    ["n", "b0", "b", "zhat", "labf", "labf_fixed", "lbf", "lbf_fixed"],
)

RESULT_COLUMNS = ["trial"] + list(BayesFactorResult._fields) + ["error"]


def run_trial(n, b0, b, prior_variance=1.0, m=DEFAULT_NODES, rng=None):
    """Simulate one dataset and compute the asymptotic and quadrature log BFs.

    Errors from the fitters and calculators propagate to the caller.

    Parameters
    ----------
    n : int
        Sample size.
    b0, b : float
        True intercept and slope.  The fixed-intercept variants hold the
        intercept at the true ``b0``.
    prior_variance : float
        Prior variance of the slope.
    m : int
        Number of Gauss-Hermite nodes.
    rng : numpy.random.Generator, int or None
        Random source for the simulation.

    Returns
    -------
    BayesFactorResult
    """
    data = simulate(n, b0, b, rng=rng)
    fit_free = fit(data.x, data.y)
    fit_fixed = fit_fixed_intercept(data.x, data.y, b0)
    return BayesFactorResult(
        n=int(n), b0=float(b0), b=float(b),
        zhat=fit_free.bhat / fit_free.std,
        labf=log_abf(fit_free, prior_variance),
        labf_fixed=log_abf(fit_fixed, prior_variance),
        lbf=log_bf(data.x, data.y, prior_variance, m),
        lbf_fixed=log_bf_fixed_intercept(data.x, data.y, b0, prior_variance, m),
    )


def _trial_worker(trial_args):
    """Run one grid cell (module-level for pickling)."""
    (idx, trial, n, b0, b, prior_variance, m, seed_seq) = trial_args
    rng = np.random.default_rng(seed_seq)
    try:
        res = run_trial(n, b0, b, prior_variance=prior_variance, m=m, rng=rng)
    except (DegenerateData, NumericalDivergence) as e:
        nan = float("nan")
        row = {"trial": trial, "n": int(n), "b0": float(b0), "b": float(b),
               "zhat": nan, "labf": nan, "labf_fixed": nan, "lbf": nan,
               "lbf_fixed": nan, "error": f"{type(e).__name__}: {e}"}
        return idx, row
    row = {"trial": trial, **res._asdict(), "error": None}
    return idx, row


def run_experiment(n_values, b_values, b0=0.0, prior_variance=1.0,
                   m=DEFAULT_NODES, n_trials=1, rng_seed=0, max_workers=None):
    """Compare log ABF with quadrature log BF over a grid of (n, b).

    Every trial draws from its own child of ``SeedSequence(rng_seed)``, so
    the table does not depend on the number of workers.  Trials that raise
    DegenerateData or NumericalDivergence are kept as rows with NaN scores
    and the exception text in ``error``.

    Parameters
    ----------
    n_values : sequence of int
        Sample sizes.
    b_values : sequence of float
        True slopes.
    b0 : float
        True intercept, shared by all cells.
    prior_variance : float
        Prior variance of the slope.
    m : int
        Number of Gauss-Hermite nodes.
    n_trials : int
        Replicates per (n, b) cell.
    rng_seed : int
        Root seed.
    max_workers : int or None
        Maximum parallel workers.  None uses all available CPUs.

    Returns
    -------
    DataFrame
        Columns ``trial, n, b0, b, zhat, labf, labf_fixed, lbf, lbf_fixed,
        error``, one row per trial, sorted by (n, b, trial).
    """
    cells = [(n, b, t) for n in n_values for b in b_values for t in range(n_trials)]
    seed_seqs = np.random.SeedSequence(rng_seed).spawn(len(cells))
    trial_args = [
        (idx, t, n, b0, b, prior_variance, m, seed_seqs[idx])
        for idx, (n, b, t) in enumerate(cells)
    ]

    n_workers = min(len(trial_args), os.cpu_count() or 1)
    if max_workers is not None:
        n_workers = min(n_workers, max_workers)
    n_workers = max(1, n_workers)

    if n_workers > 1:
        print(f"Running {len(trial_args)} trials with {n_workers} parallel workers")
        ctx = mp.get_context("spawn")
        with ProcessPoolExecutor(max_workers=n_workers, mp_context=ctx) as pool:
            results = list(pool.map(_trial_worker, trial_args))
    else:
        print(f"Running {len(trial_args)} trials sequentially")
        results = [_trial_worker(a) for a in trial_args]

    results.sort(key=lambda r: r[0])
    rows = [r[1] for r in results]
    for row in rows:
        if row["error"] is not None:
            print(f"  n={row['n']}, b={row['b']}, trial {row['trial']}: {row['error']}")

    df = pd.DataFrame(rows, columns=RESULT_COLUMNS)
    df = df.sort_values(["n", "b", "trial"], kind="stable").reset_index(drop=True)
    return df


def summarize_experiment(df):
    """Mean scores per (n, b) cell over successful trials.

    Returns
    -------
    DataFrame
        Columns ``n, b, n_ok, n_failed, zhat, labf, labf_fixed, lbf,
        lbf_fixed, ratio, ratio_fixed`` where ``ratio = labf / lbf`` on the
        cell means.
    """
    failed = df["error"].notna()
    ok = df[~failed]
    summary = (ok.groupby(["n", "b"])[["zhat", "labf", "labf_fixed", "lbf", "lbf_fixed"]]
               .mean()
               .reset_index())
    counts = (df.assign(ok=~failed, failed=failed)
              .groupby(["n", "b"])[["ok", "failed"]]
              .sum()
              .rename(columns={"ok": "n_ok", "failed": "n_failed"})
              .reset_index())
    summary = counts.merge(summary, on=["n", "b"], how="left")
    summary["ratio"] = summary["labf"] / summary["lbf"]
    summary["ratio_fixed"] = summary["labf_fixed"] / summary["lbf_fixed"]
    return summary


def _slope_through_origin(u, v):
    denom = np.sum(v * v)
    if denom == 0:
        return np.nan
    return float(np.sum(u * v) / denom)


def scaling_summary(df, min_n=None):
    """Fit log ABF = slope * log BF through the origin, separately per b.

    For large |b| the slope is expected to approach 1/b rather than 1.

    Parameters
    ----------
    df : DataFrame
        Output of :func:`run_experiment`.
    min_n : int or None
        If given, only trials with ``n >= min_n`` are used.

    Returns
    -------
    DataFrame
        Columns ``b, inv_b, slope, slope_fixed, n_trials``.
    """
    ok = df[df["error"].isna()]
    if min_n is not None:
        ok = ok[ok["n"] >= min_n]
    rows = []
    for b, grp in ok.groupby("b"):
        rows.append({
            "b": b,
            "inv_b": 1.0 / b if b != 0 else np.nan,
            "slope": _slope_through_origin(grp["labf"].values, grp["lbf"].values),
            "slope_fixed": _slope_through_origin(grp["labf_fixed"].values,
                                                 grp["lbf_fixed"].values),
            "n_trials": len(grp),
        })
    return pd.DataFrame(rows, columns=["b", "inv_b", "slope", "slope_fixed", "n_trials"])


def print_summary(summary, scaling=None):
    """Print per-cell means and, optionally, the per-b scaling slopes."""
    print(f"\n{'n':>7} {'b':>6} {'ok':>4} {'zhat':>8} {'labf':>10} "
          f"{'lbf':>10} {'labf_fix':>10} {'lbf_fix':>10} {'ratio':>7}")
    for _, r in summary.iterrows():
        print(f"{int(r['n']):>7d} {r['b']:>6.2f} {int(r['n_ok']):>4d} "
              f"{r['zhat']:>8.2f} {r['labf']:>10.3f} {r['lbf']:>10.3f} "
              f"{r['labf_fixed']:>10.3f} {r['lbf_fixed']:>10.3f} {r['ratio']:>7.3f}")
    if scaling is not None:
        print(f"\n{'b':>6} {'1/b':>7} {'slope':>7} {'slope_fix':>9} {'trials':>6}")
        for _, r in scaling.iterrows():
            print(f"{r['b']:>6.2f} {r['inv_b']:>7.3f} {r['slope']:>7.3f} "
                  f"{r['slope_fixed']:>9.3f} {int(r['n_trials']):>6d}")
