from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from causticlens.api.export import export_grid_svg, save_design, save_solid_obj
from causticlens.config import CausticConfig
from causticlens.core.geometry import place_target_points
from causticlens.core.image_io import load_density
from causticlens.core.mesh import GridMesh
from causticlens.lens.fresnel import FresnelConfig
from causticlens.lens.integration import NormalIntegrator
from causticlens.lens.refinement import RefinementResult, SurfaceRefiner
from causticlens.transport.correspondence import apply_transport_mapping
from causticlens.transport.solver import GridTransportSolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CausticDesign:
    mesh: GridMesh
    target_points: np.ndarray  # (N,3), read-only
    result: RefinementResult
    config: CausticConfig


def load_densities(config: CausticConfig) -> tuple[np.ndarray, np.ndarray]:
    """
    Load both density images on the working grid.

    Rows are flipped so that the top row of an image lands at y = 1 of the unit square.
    """
    src = load_density(config.source_path, config.resolution)
    trg = load_density(config.target_path, config.resolution)
    return np.flipud(src).copy(), np.flipud(trg).copy()


def design_caustic_lens(config: CausticConfig) -> CausticDesign:
    t0 = time.perf_counter()
    density_src, density_trg = load_densities(config)
    logger.info("Loaded densities %s and %s at %dx%d", config.source_path, config.target_path, *density_trg.shape)

    solver = GridTransportSolver()
    solver.init(config.resolution)
    tmap_src = solver.solve(density_src, config.solver)
    tmap_trg = solver.solve(density_trg, config.solver)

    mesh = GridMesh(config.width, config.height, config.resolution, config.resolution)
    mesh.build_vertex_to_triangles()
    mesh.calculate_vertex_laplacians()
    integrator = NormalIntegrator(mesh, regularization=config.refinement.regularization)

    mesh.apply_margin(config.sampling_margin)

    # Transport maps live on the unit square.
    scale = np.array([config.width, config.height], dtype=np.float64)
    xy_unit = mesh.xy() / scale
    corresponded = apply_transport_mapping(tmap_src, tmap_trg, density_trg, xy_unit) * scale

    optics = config.optics
    target_points = place_target_points(
        corresponded,
        focal_length=optics.focal_length,
        rotation_deg=optics.rotation_deg,
        translation=optics.translation,
        scale=optics.target_scale,
        scale_origin=(0.5 * config.width, 0.5 * config.height),
    )

    refiner = SurfaceRefiner(
        mesh,
        target_points,
        FresnelConfig.from_options(optics, config.refinement),
        integrator,
        max_rounds=config.refinement.max_rounds,
        tolerance=config.refinement.tolerance,
    )
    result = refiner.run()
    logger.info(
        "Refinement %s after %d round(s) in %.2fs (height range %.4g)",
        result.state.value,
        result.rounds,
        time.perf_counter() - t0,
        float(np.ptp(mesh.heights)),
    )
    return CausticDesign(mesh=mesh, target_points=target_points, result=result, config=config)


def run_design(config: CausticConfig) -> list[Path]:
    """Design the lens and write its outputs; returns the written paths."""
    design = design_caustic_lens(config)
    written = [save_solid_obj(design.mesh, config.out_path, config.thickness)]
    if config.export_svg:
        out = Path(config.out_path)
        svg_path = out.with_name(out.stem + "_targets.svg")
        written.append(
            export_grid_svg(
                design.target_points,
                svg_path,
                design.mesh.res_x,
                design.mesh.res_y,
                width=config.width,
                height=config.height,
            )
        )
    if config.export_design is not None:
        written.append(save_design(config.export_design, design))
    return written
