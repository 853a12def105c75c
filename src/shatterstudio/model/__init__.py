"""
The MODEL layer contains pure data structures and algorithms.
It has NO knowledge of the renderer (pyvista Plotter) or the dataset loop.
It deals with Geometry, Partitioning, Poses and Projection.
"""
