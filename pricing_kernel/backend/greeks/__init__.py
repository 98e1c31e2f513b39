"""Finite-difference Greeks."""
