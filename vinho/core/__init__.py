"""Core domain types for Vinho."""
