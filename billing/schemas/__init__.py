"""Schemas module - pydantic request/response bodies."""
