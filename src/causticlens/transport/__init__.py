"""
Density-driven transport maps and their composition.

A map sends a density-weighted image domain onto the uniform unit square; chaining the source
map with the inverse of the target map yields where each lens sample should send its light.
"""
