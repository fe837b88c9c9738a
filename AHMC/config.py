"""
Description:
    Run configuration for AHMC samplers.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.2

Example YAML:

    sampler:
      step_size: 1.0
      jitter: 0.1
      integration_time: 6.28
      integrator: leapfrog
      metric: diag
    logging:
      level: INFO
      rich_tracebacks: true
"""
import math
from pathlib import Path
from typing import Any, Mapping, NamedTuple, Union

import yaml

from AHMC.integrator import make_integrator
from AHMC.metrics import make_metric
from AHMC.sampler import BaseHMC
from AHMC.target import Model
from AHMC.trajectory import StaticPath

class SamplerConfig(NamedTuple):
    """Configuration for a single chain"""
    step_size: float = 1.0 # initial nominal step size
    jitter: float = 0.0 # step size jitter fraction, (0,1) or ignored
    integration_time: float = 2 * math.pi # T for static HMC
    integrator: str = "leapfrog" # 'leapfrog' or 'midpoint'
    metric: str = "diag" # 'unit', 'diag' or 'dense'

class LoggingConfig(NamedTuple):
    level: str = "INFO"
    rich_tracebacks: bool = True

class AHMCConfig(NamedTuple):
    sampler: SamplerConfig = SamplerConfig()
    logging: LoggingConfig = LoggingConfig()

def load_yaml(path: Union[str, Path]) -> Mapping[str, Any]:
    """Load a YAML document and return a mapping."""
    with Path(path).open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}

def config_from_mapping(raw: Mapping[str, Any]) -> AHMCConfig:
    sampler = raw.get("sampler", {}) or {}
    logging_cfg = raw.get("logging", {}) or {}
    unknown = set(sampler) - set(SamplerConfig._fields)
    if unknown:
        raise ValueError(f"Unknown sampler options: {sorted(unknown)}")
    defaults = SamplerConfig()
    return AHMCConfig(
        sampler=SamplerConfig(
            step_size=float(sampler.get("step_size", defaults.step_size)),
            jitter=float(sampler.get("jitter", defaults.jitter)),
            integration_time=float(sampler.get("integration_time", defaults.integration_time)),
            integrator=str(sampler.get("integrator", defaults.integrator)),
            metric=str(sampler.get("metric", defaults.metric)),
        ),
        logging=LoggingConfig(
            level=str(logging_cfg.get("level", "INFO")),
            rich_tracebacks=bool(logging_cfg.get("rich_tracebacks", True)),
        ),
    )

def load_config(path: Union[str, Path]) -> AHMCConfig:
    """Load :class:`AHMCConfig` from ``path``."""
    return config_from_mapping(load_yaml(path))

def build_sampler(model: Model, config: SamplerConfig = SamplerConfig()) -> BaseHMC:
    """Static HMC sampler for model set up from config"""
    return BaseHMC(
        model,
        metric=make_metric(config.metric, model.dim),
        integrator=make_integrator(config.integrator),
        strategy=StaticPath(config.integration_time),
        step_size=config.step_size,
        jitter=config.jitter,
    )
