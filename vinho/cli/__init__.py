"""Vinho command line interface."""
