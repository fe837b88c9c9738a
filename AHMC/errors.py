"""
Description:
    Exception types raised by AHMC.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.2
"""

class AHMCError(Exception):
    """Base class for AHMC errors"""

class DomainError(AHMCError, ValueError):
    """
    Model evaluated outside the support of the target density.

    Absorbed as +inf energy during integration, raised by Hamiltonian.init.
    """

class ConfigurationError(AHMCError, RuntimeError):
    """The chain cannot proceed without a different initial value or model."""

class ImproperPosteriorError(ConfigurationError):
    """Step size search grew past its upper bound"""

class StepSizeCollapseError(ConfigurationError):
    """Step size search shrank the step size to zero"""

class TransformFailure(AHMCError, ValueError):
    """Raised when an unsuccessful transform Result is unwrapped"""

    def __init__(self, error):
        super().__init__(f"{error.kind.name}: {error.message}")
        self.error = error
