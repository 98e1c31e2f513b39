"""Validation tests for the pricing kernel."""
