import pytest

from receptor_distribution.core.exceptions import ConvergenceError
from receptor_distribution.experiments.retry import solve_with_retries


class _Counter:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.calls


def test_first_attempt_success():
    generate = _Counter()

    inputs, solution, attempts = solve_with_retries(generate, lambda x: x * 10)

    assert (inputs, solution, attempts) == (1, 10, 1)
    assert generate.calls == 1


def test_regenerates_inputs_after_convergence_failure():
    generate = _Counter()

    def solve(x):
        if x < 3:
            raise ConvergenceError("not yet")
        return x * 10

    inputs, solution, attempts = solve_with_retries(generate, solve, n_tries=5)

    assert (inputs, solution, attempts) == (3, 30, 3)


def test_gives_up_after_n_tries(capsys):
    generate = _Counter()

    def solve(x):
        raise ConvergenceError(f"failed on {x}", residual=-1.0)

    with pytest.raises(ConvergenceError, match="failed on 3"):
        solve_with_retries(generate, solve, n_tries=3, verbose=True)

    assert generate.calls == 3
    assert "attempt 3/3 failed" in capsys.readouterr().out


def test_other_errors_are_not_retried():
    generate = _Counter()

    def solve(x):
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        solve_with_retries(generate, solve, n_tries=3)

    assert generate.calls == 1


def test_needs_at_least_one_try():
    with pytest.raises(ValueError):
        solve_with_retries(_Counter(), lambda x: x, n_tries=0)
