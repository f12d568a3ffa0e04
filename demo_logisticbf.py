#!/usr/bin/env python3
"""Demo: asymptotic vs quadrature Bayes factors on simulated logistic data."""

import numpy as np

import logisticbf as lbf
import bfexperiment as bfx


def main():
    rng = np.random.default_rng(42)
    n, b0, b = 1000, -1.0, 0.5
    prior_variance = 1.0

    data = lbf.simulate(n, b0, b, rng=rng)
    print(f"N={n}, b0={b0}, b={b}, observed y mean: {data.y.mean():.3f}")

    fit_free = lbf.fit(data.x, data.y)
    fit_fixed = lbf.fit_fixed_intercept(data.x, data.y, b0)
    print(f"Free intercept:  b0hat={fit_free.b0hat:+.3f}  bhat={fit_free.bhat:+.3f}  "
          f"std={fit_free.std:.4f}  z={fit_free.bhat / fit_free.std:.2f}")
    print(f"Fixed intercept: b0={fit_fixed.b0:+.3f}  bhat={fit_fixed.bhat:+.3f}  "
          f"std={fit_fixed.std:.4f}")

    print("\nLog Bayes factors (natural log):")
    print(f"  ABF, free intercept    = {lbf.log_abf(fit_free, prior_variance):.4f}")
    print(f"  ABF, fixed intercept   = {lbf.log_abf(fit_fixed, prior_variance):.4f}")
    for m in (1, 16, 32):
        print(f"  BF,  free intercept  m={m:<2d} = "
              f"{lbf.log_bf(data.x, data.y, prior_variance, m=m):.4f}")
    for m in (1, 16, 32):
        print(f"  BF,  fixed intercept m={m:<2d} = "
              f"{lbf.log_bf_fixed_intercept(data.x, data.y, b0, prior_variance, m=m):.4f}")

    # near-perfect separation
    sep = lbf.simulate(20, 0.0, 50.0, rng=rng)
    try:
        lbf.fit(sep.x, sep.y)
        print("\nn=20, b=50: fit returned (data happened to overlap)")
    except lbf.DegenerateData as e:
        print(f"\nn=20, b=50: {e}")

    # ---- grid over sample size and effect size ----
    print("\n" + "=" * 60)
    print("Grid: log ABF vs log BF")
    print("=" * 60)
    df = bfx.run_experiment(
        n_values=[250, 1000, 4000], b_values=[0.5, 1.0, 2.0, 4.0],
        b0=0.0, prior_variance=prior_variance, n_trials=5, rng_seed=0,
    )
    summary = bfx.summarize_experiment(df)
    scaling = bfx.scaling_summary(df, min_n=1000)
    bfx.print_summary(summary, scaling)


if __name__ == "__main__":
    main()
