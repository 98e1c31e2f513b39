"""Pricing kernel backend: core types, engines, facade and HTTP adapter."""
