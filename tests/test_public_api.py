from __future__ import annotations


def test_public_api_exports() -> None:
    import causticlens as cl

    assert hasattr(cl, "design_caustic_lens")
    assert hasattr(cl, "run_design")
    assert hasattr(cl, "CausticConfig")
    assert hasattr(cl, "save_solid_obj")
    assert issubclass(cl.DensityLoadError, cl.CausticError)
    assert issubclass(cl.ConfigurationError, ValueError)
