"""
Information-optimal allocation of olfactory receptor neurons.
"""

from .core.exceptions import ConvergenceError, InvalidInputError
from .core.information import ReceptorInformation, receptor_information
from .core.optimal_distribution import (
    AllocationResult,
    OptimizationConfig,
    calculate_optimal_dist,
    solve_optimal_dist,
)
from .core.environments import generate_environment, rescale_odors
from .core.sensing import generate_random_sensing

__version__ = "0.1.0"
