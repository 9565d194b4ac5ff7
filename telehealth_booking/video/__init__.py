"""Video meeting gateway."""
