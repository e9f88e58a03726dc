"""Default configuration values for adaptive-time.

This module centralizes numeric constants shared by the step controller
and the nonlinear solver.
"""

# Target relative error between the full step and the two half steps
DEFAULT_TARGET_TOLERANCE = 1e-2

# Timestep cut factor when a sub-solve fails to converge
DEFAULT_NONCONVERGENCE_SHRINK = 0.25

# Rejections allowed within a single advance before giving up
DEFAULT_MAX_RETRIES = 50

# Max nonlinear iterations per step solve
DEFAULT_MAX_NONLINEAR_ITERATIONS = 20

# Floor for a scaled error of exactly zero, keeps the growth factor finite
MIN_SCALED_ERROR = 1e-12

# Regularization added to the diagonal in dense linear solves
DENSE_SOLVE_REGULARIZATION = 1e-14
