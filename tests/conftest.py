"""Pytest configuration for adaptive-time tests

Handles platform-specific JAX configuration:
- macOS: Forces CPU backend since Metal doesn't support triangular_solve

Enables jaxtyping runtime checks with beartype for the array-typed norm
module.

Uses pytest_configure hook to ensure setup happens before any test imports.

Also provides shared systems used across the test modules:
- decay_system: y' = -y, y(0) = 1, with an analytic Jacobian
- quadratic_decay_system: y' = -y^2, y(0) = 1 (Jacobian via jax.jacfwd)
- coupled_system: two variables spread over three dofs
"""

import os
import sys

import pytest


def _setup_jaxtyping():
    """Enable jaxtyping runtime checking with beartype."""
    try:
        from jaxtyping import install_import_hook
        # Enable runtime type checking for the norm evaluator
        install_import_hook("adaptive_time.analysis.norms", "beartype.beartype")
    except ImportError:
        pass  # beartype not installed, skip runtime checking


def pytest_configure(config):
    """
    Pytest hook that runs before test collection.

    This ensures JAX is configured BEFORE any test modules are imported.
    """
    # Platform-specific configuration BEFORE importing JAX
    if sys.platform == 'darwin':
        # macOS: Force CPU backend - Metal doesn't support triangular_solve
        os.environ['JAX_PLATFORMS'] = 'cpu'

    # Enable jaxtyping runtime checking (must be before adaptive_time imports)
    _setup_jaxtyping()

    # Import adaptive_time to enable 64-bit floats
    import adaptive_time  # noqa: F401


# =============================================================================
# Shared Test Systems
# =============================================================================


@pytest.fixture
def decay_system():
    """y' = -y with y(0) = 1; exact solution exp(-t)."""
    import jax.numpy as jnp

    from adaptive_time import TransientSystem

    return TransientSystem(
        lambda t, y: -y,
        y0=[1.0],
        jacobian_fn=lambda t, y: -jnp.eye(y.shape[0], dtype=y.dtype),
    )


@pytest.fixture
def quadratic_decay_system():
    """y' = -y^2 with y(0) = 1; exact solution 1 / (1 + t)."""
    from adaptive_time import TransientSystem

    return TransientSystem(lambda t, y: -(y * y), y0=[1.0])


@pytest.fixture
def coupled_system():
    """Two variables: a fast pair of dofs (0, 1) and a slow dof (2)."""
    import jax.numpy as jnp

    from adaptive_time import TransientSystem

    rates = jnp.array([10.0, 10.0, 0.1])
    return TransientSystem(
        lambda t, y: -rates * y,
        y0=[1.0, 0.5, 1.0],
        jacobian_fn=lambda t, y: -jnp.diag(rates),
        variable_dofs={0: (0, 1), 1: (2,)},
    )
