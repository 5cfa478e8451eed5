"""Services Layer — auth resolution, chat persistence, model orchestration, tools.

Invariants:
    - Tool dispatch uses an explicit dict mapping (no auto-discovery)
    - Tool failures become tool results, never exceptions

Design Decisions:
    - One file per concern; routes stay thin
"""
