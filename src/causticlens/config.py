from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from causticlens.exceptions import ConfigurationError

LIGHT_MODELS = ("parallel", "point")
SURFACE_MODELS = ("refractive", "reflective")


@dataclass(frozen=True)
class OpticsConfig:
    refractive_index: float = 1.55
    focal_length: float = 1.0
    light_model: str = "parallel"
    surface_model: str = "refractive"
    light_position: tuple[float, float, float] = (0.5, 0.5, 0.5)
    # Direction of travel of parallel light.
    light_direction: tuple[float, float, float] = (0.0, 0.0, -1.0)
    rotation_deg: tuple[float, float, float] = (0.0, 0.0, 0.0)
    translation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    target_scale: tuple[float, float] = (1.0, 1.0)


@dataclass(frozen=True)
class SolverOptions:
    # Fraction of the mean density added everywhere so black pixels still receive some mass.
    density_floor: float = 1e-3


@dataclass(frozen=True)
class RefinementOptions:
    max_rounds: int = 10
    tolerance: float = 0.0
    workers: int = 1
    min_norm: float = 1e-12
    regularization: float = 1e-6


@dataclass(frozen=True)
class CausticConfig:
    source_path: Path
    target_path: Path
    resolution: int = 100
    width: float = 1.0
    height: float = 1.0
    margin: float | None = None
    out_path: Path = Path("output.obj")
    thickness: float = 0.2
    export_svg: bool = False
    export_design: Path | None = None
    optics: OpticsConfig = field(default_factory=OpticsConfig)
    solver: SolverOptions = field(default_factory=SolverOptions)
    refinement: RefinementOptions = field(default_factory=RefinementOptions)

    @property
    def sampling_margin(self) -> float:
        """Border kept free of samples; defaults to one grid cell."""
        return default_margin(self.resolution) if self.margin is None else float(self.margin)


def default_margin(resolution: int) -> float:
    return 1.0 / float(resolution)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigurationError(msg)


def _num(raw: Any, cast: Callable[[Any], Any], name: str) -> Any:
    _require(not isinstance(raw, (bool, dict, list)), f"{name} must be a number, got {raw!r}")
    try:
        return cast(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _vec(raw: Any, n: int, name: str) -> tuple[float, ...]:
    _require(isinstance(raw, (list, tuple)) and len(raw) == n, f"{name} must be a list of {n} numbers")
    return tuple(_num(v, float, name) for v in raw)


def _path(raw: Any, name: str) -> Path:
    _require(isinstance(raw, (str, Path)) and str(raw) != "", f"{name} must be a non-empty path")
    return Path(raw)


def config_section(data: dict[str, Any], key: str) -> dict[str, Any]:
    if key not in data:
        return {}
    section = data[key]
    _require(isinstance(section, dict), f"{key} must be an object")
    return section


def read_config_data(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"config file not found: {path}") from e
    except OSError as e:
        raise ConfigurationError(f"cannot read config file {path}: {e}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"{path} is not valid JSON: {e}") from e
    _require(isinstance(data, dict), f"{path} must contain a JSON object")
    return data


def load_config(path: Path) -> CausticConfig:
    return parse_config(read_config_data(path))


def parse_optics(data: dict[str, Any]) -> OpticsConfig:
    _require(isinstance(data, dict), "optics must be an object")
    d = OpticsConfig()

    n = _num(data.get("refractive_index", d.refractive_index), float, "optics.refractive_index")
    _require(n > 0.0, "optics.refractive_index must be > 0")
    focal = _num(data.get("focal_length", d.focal_length), float, "optics.focal_length")
    _require(focal > 0.0, "optics.focal_length must be > 0")

    light_model = data.get("light_model", d.light_model)
    _require(light_model in LIGHT_MODELS, f"optics.light_model must be one of {LIGHT_MODELS}")
    surface_model = data.get("surface_model", d.surface_model)
    _require(surface_model in SURFACE_MODELS, f"optics.surface_model must be one of {SURFACE_MODELS}")

    direction = _vec(data.get("light_direction", d.light_direction), 3, "optics.light_direction")
    _require(any(c != 0.0 for c in direction), "optics.light_direction must be non-zero")

    scale = _vec(data.get("target_scale", d.target_scale), 2, "optics.target_scale")
    _require(scale[0] > 0.0 and scale[1] > 0.0, "optics.target_scale values must be > 0")

    return OpticsConfig(
        refractive_index=n,
        focal_length=focal,
        light_model=str(light_model),
        surface_model=str(surface_model),
        light_position=_vec(data.get("light_position", d.light_position), 3, "optics.light_position"),
        light_direction=direction,
        rotation_deg=_vec(data.get("rotation_deg", d.rotation_deg), 3, "optics.rotation_deg"),
        translation=_vec(data.get("translation", d.translation), 3, "optics.translation"),
        target_scale=scale,
    )


def parse_refinement(data: dict[str, Any]) -> RefinementOptions:
    _require(isinstance(data, dict), "refinement must be an object")
    d = RefinementOptions()
    max_rounds = _num(data.get("max_rounds", d.max_rounds), int, "refinement.max_rounds")
    _require(max_rounds >= 1, "refinement.max_rounds must be >= 1")
    tol = _num(data.get("tolerance", d.tolerance), float, "refinement.tolerance")
    _require(tol >= 0.0, "refinement.tolerance must be >= 0")
    workers = _num(data.get("workers", d.workers), int, "refinement.workers")
    _require(workers >= 1, "refinement.workers must be >= 1")
    min_norm = _num(data.get("min_norm", d.min_norm), float, "refinement.min_norm")
    _require(min_norm > 0.0, "refinement.min_norm must be > 0")
    reg = _num(data.get("regularization", d.regularization), float, "refinement.regularization")
    _require(reg > 0.0, "refinement.regularization must be > 0")
    return RefinementOptions(
        max_rounds=max_rounds, tolerance=tol, workers=workers, min_norm=min_norm, regularization=reg
    )


def parse_config(data: dict[str, Any]) -> CausticConfig:
    _require(isinstance(data, dict), "config must be a JSON object")

    _require(bool(data.get("source_path")), "source_path is required")
    _require(bool(data.get("target_path")), "target_path is required")
    src = _path(data["source_path"], "source_path")
    trg = _path(data["target_path"], "target_path")

    resolution = _num(data.get("resolution", 100), int, "resolution")
    _require(resolution >= 2, "resolution must be >= 2")
    width = _num(data.get("width", 1.0), float, "width")
    height = _num(data.get("height", 1.0), float, "height")
    _require(width > 0.0 and height > 0.0, "width and height must be > 0")

    margin_raw = data.get("margin")
    margin = None if margin_raw is None else _num(margin_raw, float, "margin")
    # The default margin depends on the resolution; both must leave a non-empty sampling area.
    effective = default_margin(resolution) if margin is None else margin
    _require(
        0.0 <= effective < 0.5 * min(width, height),
        f"sampling margin {effective:g} must be in [0, min(width,height)/2); "
        "increase the resolution or set margin explicitly",
    )

    thickness = _num(data.get("thickness", 0.2), float, "thickness")
    _require(thickness > 0.0, "thickness must be > 0")

    solver = config_section(data, "solver")
    floor = _num(solver.get("density_floor", SolverOptions().density_floor), float, "solver.density_floor")
    _require(floor >= 0.0, "solver.density_floor must be >= 0")

    export_design = data.get("export_design")
    export_svg = data.get("export_svg", False)
    _require(isinstance(export_svg, bool), "export_svg must be true or false")

    return CausticConfig(
        source_path=src,
        target_path=trg,
        resolution=resolution,
        width=width,
        height=height,
        margin=margin,
        out_path=_path(data.get("out_path", "output.obj"), "out_path"),
        thickness=thickness,
        export_svg=export_svg,
        export_design=None if export_design is None else _path(export_design, "export_design"),
        optics=parse_optics(config_section(data, "optics")),
        solver=SolverOptions(density_floor=floor),
        refinement=parse_refinement(config_section(data, "refinement")),
    )
