from causticlens.api.export import export_grid_svg, export_triangles_svg, load_design, save_design, save_solid_obj
from causticlens.api.pipeline import CausticDesign, design_caustic_lens, run_design

__all__ = [
    "CausticDesign",
    "design_caustic_lens",
    "run_design",
    "save_solid_obj",
    "save_design",
    "load_design",
    "export_grid_svg",
    "export_triangles_svg",
]
