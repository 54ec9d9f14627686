"""Pydantic wire schemas for the external speech WebSocket API."""
