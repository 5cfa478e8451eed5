"""API Layer — FastAPI routes, handler pipeline, and error responder.

Invariants:
    - Routes registered explicitly in main.py (no auto-discovery)
    - Every error leaves the process in the {"error": {...}} envelope

Design Decisions:
    - Thin routes delegate to services; cross-cutting stages live in handler.py
"""
