"""
The CONTROLLER layer adapts the model to external collaborators:
the pyvista renderer and the dataset batch loop.
"""
