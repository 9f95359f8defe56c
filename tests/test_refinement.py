import numpy as np
import pytest

from causticlens.core.geometry import place_target_points
from causticlens.core.mesh import GridMesh
from causticlens.exceptions import ConfigurationError, SolverError
from causticlens.lens.fresnel import FresnelConfig, LightModel, SurfaceModel
from causticlens.lens.integration import NormalIntegrator
from causticlens.lens.refinement import RefinementState, SurfaceRefiner, reanchor_heights


def _flat_targets(mesh: GridMesh, shift: float = 0.0) -> np.ndarray:
    xy = mesh.xy()
    xy[:, 0] += shift
    return place_target_points(xy, focal_length=1.0, rotation_deg=(0.0, 0.0, 0.0), translation=(0.0, 0.0, 0.0))


def test_reanchor_is_idempotent():
    pts = np.zeros((4, 3))
    pts[:, 2] = [0.5, -0.2, 1.5, 0.0]
    assert reanchor_heights(pts) == 1.5
    assert pts[:, 2].max() == 0.0
    assert reanchor_heights(pts) == 0.0
    assert np.allclose(pts[:, 2], [-1.0, -1.7, 0.0, -1.5])


def test_plane_normals_integrate_to_plane():
    mesh = GridMesh(1.0, 1.0, 12, 12)
    x, y = mesh.source_points[:, 0], mesh.source_points[:, 1]
    plane = 0.3 * x - 0.1 * y
    normals = np.stack([np.full_like(x, -0.3), np.full_like(x, 0.1), np.ones_like(x)], axis=1)
    normals /= np.linalg.norm(normals, axis=1, keepdims=True)

    integrator = NormalIntegrator(mesh)
    z = integrator.integrate(mesh, normals)
    assert integrator.last_residual_deg < 1e-3
    assert np.array_equal(mesh.source_points[:, 2], z)
    assert np.max(np.abs((z - z.mean()) - (plane - plane.mean()))) < 1e-4


def test_normals_parallel_to_the_plane_are_rejected():
    mesh = GridMesh(1.0, 1.0, 3, 3)
    normals = np.tile([1.0, 0.0, 0.0], (mesh.n_vertices, 1))
    with pytest.raises(SolverError):
        NormalIntegrator(mesh).integrate(mesh, normals)


def test_identity_targets_keep_surface_flat():
    mesh = GridMesh(1.0, 1.0, 10, 10)
    refiner = SurfaceRefiner(mesh, _flat_targets(mesh), FresnelConfig(), max_rounds=3)
    result = refiner.run()
    assert result.state == RefinementState.TERMINATED
    assert result.rounds == 3
    assert np.max(np.abs(mesh.source_points[:, 2])) < 1e-12
    assert np.allclose(result.normals, [0.0, 0.0, -1.0])


def test_tolerance_stops_early():
    mesh = GridMesh(1.0, 1.0, 8, 8)
    result = SurfaceRefiner(mesh, _flat_targets(mesh), FresnelConfig(), max_rounds=10, tolerance=1e-9).run()
    assert result.converged
    assert result.rounds == 1
    assert len(result.max_height_change) == 1


def test_shifted_targets_tilt_the_surface():
    mesh = GridMesh(1.0, 1.0, 10, 10)
    xy_before = mesh.xy()
    result = SurfaceRefiner(mesh, _flat_targets(mesh, shift=0.1), FresnelConfig(refractive_index=1.55), max_rounds=5).run()
    assert result.rounds == 5

    pts = mesh.source_points
    assert np.array_equal(pts[:, :2], xy_before)
    assert pts[:, 2].max() == 0.0

    z = pts[:, 2].reshape(10, 10)
    slope = (z[:, -1] - z[:, 0]) / (pts[9, 0] - pts[0, 0])
    assert np.all(slope < -0.15) and np.all(slope > -0.3)
    # No tilt across y.
    assert np.max(np.abs(z - z[:1, :])) < 1e-4


def test_target_count_must_match_mesh():
    mesh = GridMesh(1.0, 1.0, 4, 4)
    with pytest.raises(ConfigurationError):
        SurfaceRefiner(mesh, np.zeros((5, 3)), FresnelConfig())


@pytest.mark.parametrize("light", [LightModel.PARALLEL, LightModel.POINT_SOURCE])
@pytest.mark.parametrize("surface_model", [SurfaceModel.REFRACTIVE, SurfaceModel.REFLECTIVE])
def test_every_round_yields_unit_normals(light, surface_model):
    mesh = GridMesh(1.0, 1.0, 8, 8)
    # Converging pattern: every ray is pulled towards the centre.
    xy = 0.5 + 0.7 * (mesh.xy() - 0.5)
    targets = place_target_points(xy, focal_length=1.0)
    fresnel = FresnelConfig(
        refractive_index=1.55,
        light_model=light,
        surface_model=surface_model,
        light_position=(0.5, 0.5, 3.0),
        workers=2,
    )
    refiner = SurfaceRefiner(mesh, targets, fresnel, max_rounds=4)
    for _ in range(4):
        normals, dz = refiner.step()
        assert normals.shape == (64, 3)
        assert np.max(np.abs(np.linalg.norm(normals, axis=1) - 1.0)) < 1e-12
        assert np.all(np.isfinite(mesh.heights))
        assert np.isfinite(dz)
        assert np.isfinite(refiner.integrator.last_residual_deg)
    # The surface bends: a converging pattern is not a flat plate.
    assert np.ptp(mesh.heights) > 1e-3


def test_run_records_normal_residual_per_round():
    mesh = GridMesh(1.0, 1.0, 10, 10)
    result = SurfaceRefiner(mesh, _flat_targets(mesh, shift=0.1), FresnelConfig(), max_rounds=3).run()
    assert len(result.normal_residual_deg) == 3
    assert all(0.0 <= r < 5.0 for r in result.normal_residual_deg)
