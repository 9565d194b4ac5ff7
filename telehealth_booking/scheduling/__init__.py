"""Pure slot arithmetic and the availability engine."""
