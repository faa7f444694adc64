"""
Financy — asset monitoring and virtual trading core.

Application package root. A modular monolith laid out as ports & adapters:

Bounded contexts:
    - trading: Price alerts, trading signals, virtual trade execution, suggestions.

Layers:
    - domain: Pure business logic, entities, ports (ABCs), errors.
    - application: Use cases, DTOs, orchestration.
    - infrastructure: Adapters (SQL store, market data, FX, notifications).
    - interfaces: FastAPI routers, Pydantic schemas, composition root.
    - realtime: Periodic evaluation scheduler.
    - shared: Cross-cutting concerns (errors, rate limiting, logging).
"""
