"""Core Layer — error taxonomy, validators, rate limiting, retry.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
    - Nothing here touches the network or the database

Design Decisions:
    - Functional core separated from imperative shell
"""
