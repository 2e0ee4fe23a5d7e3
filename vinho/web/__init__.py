"""Vinho HTTP API."""
