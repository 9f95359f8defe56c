"""
Lens surface computation: desired normals, normal integration and the refinement loop.
"""
