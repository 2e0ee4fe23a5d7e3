"""Service layer for Vinho."""
