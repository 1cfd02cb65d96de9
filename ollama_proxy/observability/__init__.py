"""Observability helpers for the proxy.

Request IDs + structlog contextvars, the in-flight request gauge and the
process/system load sampler folded into every audit row.
"""
