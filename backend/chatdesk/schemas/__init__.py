"""Pydantic Schemas — response shapes for API endpoints.

Invariants:
    - Schemas describe the API contract, models describe persistence

Design Decisions:
    - Request bodies are checked by core/validators.py so failures use the
      same error codes as every other validation path
"""
