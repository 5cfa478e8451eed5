"""Infrastructure Layer — external service clients and cross-cutting concerns.

Invariants:
    - Infrastructure never imports from services/ or api/
    - Every outbound failure is mapped to a typed AppError

Design Decisions:
    - Thin wrappers over raw clients keep SDK error types out of services
"""
