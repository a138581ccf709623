"""Deterministic report artifacts."""
