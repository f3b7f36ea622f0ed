"""Structured logging and Prometheus metrics for the platform factory."""
