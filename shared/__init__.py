"""Shared infrastructure: configuration, logging, errors, engine client and resilience."""
