#!/usr/bin/env python
"""
Run the change-determinants experiment.

Usage from project root:
    python scripts/run_change_determinants.py
    python scripts/run_change_determinants.py --quick          # Fast test
    python scripts/run_change_determinants.py --n_env_samples 100 --method slsqp
"""

import sys
import argparse
import time
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from receptor_distribution.core.optimal_distribution import OptimizationConfig, METHODS, ROOT_FINDERS
from receptor_distribution.experiments.change_determinants import (
    ChangeDeterminantsConfig,
    run_change_determinants,
)


def parse_args():
    parser = argparse.ArgumentParser(
        description='How environment and tuning changes move the optimal receptor distribution'
    )
    parser.add_argument(
        '--quick',
        action='store_true',
        help='Quick test with a small population and few samples'
    )
    parser.add_argument('--Ktot', type=float, default=25000.0,
                        help='Total number of neurons (default: 25000)')
    parser.add_argument('--n_env_samples', type=int, default=500,
                        help='Environment pairs per phase (default: 500)')
    parser.add_argument('--n_sensing_samples', type=int, default=50,
                        help='Random sensing matrices per phase (default: 50)')
    parser.add_argument('--n_tries', type=int, default=3,
                        help='Attempts per sample before giving up (default: 3)')
    parser.add_argument('--method', type=str, default='lagsearch', choices=list(METHODS),
                        help='Optimization method (default: lagsearch)')
    parser.add_argument('--root_method', type=str, default='brentq', choices=sorted(ROOT_FINDERS),
                        help='Root finder for the lagsearch multiplier (default: brentq)')
    parser.add_argument('--maxfev', type=int, default=50000,
                        help='Objective evaluations per optimization (default: 50000)')
    parser.add_argument('--sumtol', type=float, default=1e-3,
                        help='Allowed |sum(K) - Ktot| (default: 1e-3)')
    parser.add_argument('--disp', action='store_true',
                        help='Print optimizer progress')
    parser.add_argument('--seed', type=int, default=0,
                        help='Seed for the reference sensing matrix (default: 0)')
    return parser.parse_args()


def main():
    args = parse_args()

    optimization = OptimizationConfig(
        method=args.method,
        root_method=args.root_method,
        maxfev=args.maxfev,
        sumtol=args.sumtol,
        disp=args.disp,
    )
    cfg = ChangeDeterminantsConfig(
        Ktot=args.Ktot,
        n_env_samples=args.n_env_samples,
        n_sensing_samples=args.n_sensing_samples,
        n_tries=args.n_tries,
        reference_seed=args.seed,
        optimization=optimization,
    )
    if args.quick:
        cfg.n_receptors = 8
        cfg.n_odors = 20
        cfg.n_env_samples = 5
        cfg.n_sensing_samples = 3

    start_time = time.time()
    results = run_change_determinants(cfg)
    elapsed = time.time() - start_time

    print(f"\nFinished in {elapsed:.1f} s")
    for phase in ('generic', 'nonoverlapping', 'varied', 'narrow_wide'):
        n_failed = len(results[phase]['failures'])
        if n_failed:
            print(f"  {phase}: {n_failed} samples skipped")

    return results


if __name__ == "__main__":
    main()
