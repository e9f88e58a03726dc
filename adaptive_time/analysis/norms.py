"""Discrete error norms for step comparison and convergence checks.

A solution vector is partitioned into variables. By default every degree
of freedom is its own variable (indexed 0..n-1); a system may instead
declare ``variable_dofs``, a mapping from variable index to the dof indices
belonging to that variable.

The weighted norm scales each variable's own norm by its weight before
aggregating:

    L2:    sqrt(sum_v (w_v * ||d_v||_2)^2)
    L1:    sum_v w_v * ||d_v||_1
    L_inf: max_v w_v * ||d_v||_inf

With unit weights these reduce to the plain discrete norms of the vector.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence

import jax.numpy as jnp
from jax import Array
from jaxtyping import Float

from adaptive_time.errors import DimensionMismatch

VariableDofs = Mapping[int, Sequence[int]]


class NormType(Enum):
    """Supported discrete norms."""

    DISCRETE_L1 = "l1"
    DISCRETE_L2 = "l2"
    DISCRETE_L_INF = "linf"

    @classmethod
    def from_string(cls, s: str) -> "NormType":
        """Parse a norm type from a string such as 'l2' or 'discrete_l_inf'."""
        s_lower = s.lower().strip().strip("\"'")
        aliases = {
            "l1": cls.DISCRETE_L1,
            "discrete_l1": cls.DISCRETE_L1,
            "l2": cls.DISCRETE_L2,
            "discrete_l2": cls.DISCRETE_L2,
            "linf": cls.DISCRETE_L_INF,
            "l_inf": cls.DISCRETE_L_INF,
            "inf": cls.DISCRETE_L_INF,
            "discrete_l_inf": cls.DISCRETE_L_INF,
        }
        if s_lower in aliases:
            return aliases[s_lower]
        raise ValueError(f"Unknown norm type: {s}. Supported: l1, l2, linf")


def _aggregate(values: Array, norm_type: NormType) -> float:
    """Aggregate non-negative per-entry magnitudes into one norm value."""
    if values.size == 0:
        return 0.0
    if norm_type == NormType.DISCRETE_L1:
        return float(jnp.sum(values))
    if norm_type == NormType.DISCRETE_L_INF:
        return float(jnp.max(values))
    return float(jnp.sqrt(jnp.sum(values * values)))


@dataclass(frozen=True)
class NormEvaluator:
    """Computes a (possibly weighted) discrete norm of a difference vector.

    Attributes:
        norm_type: Which discrete norm to aggregate with (L2 by default)
    """

    norm_type: NormType = NormType.DISCRETE_L2

    def evaluate(
        self,
        difference: Float[Array, "..."],
        weights: Optional[Mapping[int, float]] = None,
        variable_dofs: Optional[VariableDofs] = None,
    ) -> float:
        """Evaluate the norm of ``difference``.

        Args:
            difference: 1-D vector, e.g. coarse minus refined solution or a
                nonlinear residual
            weights: Mapping variable index -> weight. Empty or None weights
                all variables equally.
            variable_dofs: Optional variable layout; defaults to one
                variable per dof

        Returns:
            Norm value as a Python float

        Raises:
            DimensionMismatch: If the vector is not 1-D, if the layout refers
                to dofs outside the vector, or if non-empty weights do not
                cover exactly the set of variables
        """
        diff = jnp.asarray(difference)
        if diff.ndim != 1:
            raise DimensionMismatch(f"Expected a 1-D difference vector, got shape {diff.shape}")
        n = diff.shape[0]
        magnitudes = jnp.abs(diff)

        if variable_dofs is None:
            if not weights:
                return _aggregate(magnitudes, self.norm_type)
            _check_weight_domain(weights, range(n))
            w = jnp.asarray([float(weights[i]) for i in range(n)], dtype=magnitudes.dtype)
            return _aggregate(w * magnitudes, self.norm_type)

        _check_layout(variable_dofs, n)
        if weights:
            _check_weight_domain(weights, variable_dofs.keys())

        per_variable = []
        for var in sorted(variable_dofs):
            dofs = jnp.asarray(list(variable_dofs[var]), dtype=jnp.int32)
            var_norm = _aggregate(magnitudes[dofs], self.norm_type)
            scale = float(weights[var]) if weights else 1.0
            per_variable.append(scale * var_norm)
        return _aggregate(jnp.asarray(per_variable, dtype=magnitudes.dtype), self.norm_type)


def _check_weight_domain(weights: Mapping[int, float], variables) -> None:
    expected = set(variables)
    given = set(weights)
    if given != expected:
        missing = sorted(expected - given)
        extra = sorted(given - expected)
        raise DimensionMismatch(
            f"Weight mapping does not match the {len(expected)} scored variables "
            f"(missing={missing[:8]}, unexpected={extra[:8]})"
        )


def _check_layout(variable_dofs: VariableDofs, n: int) -> None:
    for var, dofs in variable_dofs.items():
        for dof in dofs:
            if not 0 <= int(dof) < n:
                raise DimensionMismatch(
                    f"Variable {var} refers to dof {dof}, but the vector has {n} entries"
                )


def default_variable_dofs(n: int) -> Dict[int, Sequence[int]]:
    """One variable per dof."""
    return {i: (i,) for i in range(n)}
