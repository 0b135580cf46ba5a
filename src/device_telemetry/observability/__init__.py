"""Tracing and Prometheus metrics for collection runs."""
