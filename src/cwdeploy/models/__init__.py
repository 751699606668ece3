"""Pydantic models for configuration, progress state and chain results."""
