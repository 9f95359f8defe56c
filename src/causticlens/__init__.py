from causticlens.api import CausticDesign, design_caustic_lens, load_design, run_design, save_design, save_solid_obj
from causticlens.config import CausticConfig, load_config, parse_config
from causticlens.exceptions import (
    CausticError,
    ConfigurationError,
    DegenerateGeometryError,
    DensityLoadError,
    SolverError,
)

__all__ = [
    "CausticConfig",
    "CausticDesign",
    "CausticError",
    "ConfigurationError",
    "DegenerateGeometryError",
    "DensityLoadError",
    "SolverError",
    "design_caustic_lens",
    "load_config",
    "load_design",
    "parse_config",
    "run_design",
    "save_design",
    "save_solid_obj",
]
