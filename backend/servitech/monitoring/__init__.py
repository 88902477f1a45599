"""Prometheus metrics for the advisory engine."""
