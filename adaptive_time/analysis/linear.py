"""Linear solve entry points used inside the Newton iteration.

Every solver takes the tolerance and iteration cap chosen by the
convergence monitor. Direct solvers ignore both; iterative solvers honour
them. An inexact linear solve is never an error on its own: the Newton
loop judges progress from the nonlinear residual alone.
"""

from abc import ABC, abstractmethod
from typing import NamedTuple, Optional

import jax
import jax.numpy as jnp
import jax.scipy.linalg
import jax.scipy.sparse.linalg
from jax import Array
from jaxtyping import Float

from adaptive_time.config import DENSE_SOLVE_REGULARIZATION


class LinearSolveResult(NamedTuple):
    """Result from a linear solve.

    Attributes:
        x: Solution vector
        iterations: Iterations used (1 for direct solves, None when the
            backend does not report it)
        residual_norm: ||A x - b||_2 of the returned solution
    """

    x: Array
    iterations: Optional[int]
    residual_norm: float


class LinearSolver(ABC):
    """Solves J x = b for one Newton update."""

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def solve(
        self,
        matrix: Float[Array, "n n"],
        rhs: Float[Array, " n"],
        tolerance: float,
        max_iterations: int,
    ) -> LinearSolveResult:
        """Solve ``matrix @ x = rhs`` to ``tolerance`` within ``max_iterations``."""


class DenseLinearSolver(LinearSolver):
    """LU solve via jax.scipy.linalg.solve with a tiny diagonal shift."""

    def __init__(self, regularization: float = DENSE_SOLVE_REGULARIZATION):
        self.regularization = regularization

    def solve(self, matrix, rhs, tolerance, max_iterations):
        reg = self.regularization * jnp.eye(matrix.shape[0], dtype=matrix.dtype)
        x = jax.scipy.linalg.solve(matrix + reg, rhs)
        return LinearSolveResult(
            x=x,
            iterations=1,
            residual_norm=float(jnp.linalg.norm(matrix @ x - rhs)),
        )


class GMRESLinearSolver(LinearSolver):
    """Restarted GMRES via jax.scipy.sparse.linalg.gmres.

    ``tolerance`` is passed as the relative tolerance and
    ``max_iterations`` bounds the number of restart cycles.
    """

    def __init__(self, restart: int = 20, atol: float = 0.0):
        self.restart = restart
        self.atol = atol

    def solve(self, matrix, rhs, tolerance, max_iterations):
        restart = min(self.restart, max(int(rhs.shape[0]), 1))
        x, _ = jax.scipy.sparse.linalg.gmres(
            matrix,
            rhs,
            tol=tolerance,
            atol=self.atol,
            restart=restart,
            maxiter=max_iterations,
        )
        return LinearSolveResult(
            x=x,
            iterations=None,
            residual_norm=float(jnp.linalg.norm(matrix @ x - rhs)),
        )


def get_linear_solver(name: str) -> LinearSolver:
    """Build a linear solver from a short name ('dense', 'lu', 'gmres')."""
    key = name.lower().strip()
    if key in ("dense", "lu", "direct"):
        return DenseLinearSolver()
    if key == "gmres":
        return GMRESLinearSolver()
    raise ValueError(f"Unknown linear solver: {name}. Supported: dense, gmres")
