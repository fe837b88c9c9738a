"""
Description:
    AHMC: adaptive Hamiltonian Monte Carlo base sampler.
    USE THE CORRECT ENVIRONMENT:  AHMC
"""
__version__ = "0.2.0"

from AHMC.datatypes import QP, PhasePoint, Sample, SamplerOutput
from AHMC.errors import (
    AHMCError, DomainError, ConfigurationError,
    ImproperPosteriorError, StepSizeCollapseError, TransformFailure
)
from AHMC.target import Model
from AHMC.metrics import UnitMetric, DiagonalMetric, DenseMetric
from AHMC.hamiltonian import Hamiltonian
from AHMC.integrator import ExplicitLeapfrog, ImplicitMidpoint
from AHMC.trajectory import TrajectoryStrategy, StaticPath
from AHMC.sampler import BaseHMC, SamplerPhase, sample_chain
