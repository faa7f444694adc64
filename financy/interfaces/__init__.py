"""HTTP interface layer (FastAPI routers, schemas, dependency wiring)."""
