"""Normalize, score, validate and aggregate lab data."""
