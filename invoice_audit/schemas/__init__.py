"""Pydantic snapshot DTOs."""
