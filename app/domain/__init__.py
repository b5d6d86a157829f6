"""
Domain layer containing core business logic and domain services.

Submodules:
- stream: Stream session orchestration (quota, launch, stop, reconciliation).
- utils: Domain-specific utilities (e.g., ID generation, time helpers).
"""
