"""Pricing engines and the implied-volatility solver."""
