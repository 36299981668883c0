"""
Core resolution layer: schema inspection, dual-backend query execution,
strategy chains and normalization into the canonical entity graph.

This package is intentionally independent of the web layer.
"""
