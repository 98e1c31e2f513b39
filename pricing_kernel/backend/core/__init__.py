"""Value types, error taxonomy, settings and shared numerics."""
