"""
Bounded retries around the optimal-distribution solver.

The optimization occasionally fails for badly conditioned random inputs.
Drivers then simply draw new inputs and try again, a fixed number of times.
"""

from typing import Any, Callable, Tuple

from ..core.exceptions import ConvergenceError


def solve_with_retries(
    generate: Callable[[], Any],
    solve: Callable[[Any], Any],
    n_tries: int = 3,
    verbose: bool = False
) -> Tuple[Any, Any, int]:
    """
    Generate inputs and solve, regenerating the inputs after a ConvergenceError.

    Args:
        generate: Called with no arguments; returns fresh random inputs
        solve: Called with the generated inputs; may raise ConvergenceError
        n_tries: Maximum number of attempts
        verbose: Print a line for every failed attempt

    Returns:
        (inputs, solution, attempts): the inputs that worked, the solver
        output and the number of attempts used

    Raises:
        ConvergenceError: The error from the last attempt, once all
        n_tries attempts have failed. Other exceptions propagate immediately.
    """
    if n_tries < 1:
        raise ValueError(f"n_tries must be at least 1, got {n_tries}")

    last_error = None
    for attempt in range(1, n_tries + 1):
        inputs = generate()
        try:
            return inputs, solve(inputs), attempt
        except ConvergenceError as err:
            last_error = err
            if verbose:
                print(f"  attempt {attempt}/{n_tries} failed: {err}")

    raise last_error
