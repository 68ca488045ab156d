"""Domain models and computations for the volumetric reconciliation engine.

This package contains in-memory (Pydantic) models describing batches, vessels
and their volume ledgers, plus the pure replay, classification and
aggregation passes over them. They are independent from persistence models so
that business logic and testing can evolve without DB coupling.
"""

__all__ = [
    "audit",
    "batch",
    "capacity",
    "engine",
    "events",
    "ledger_store",
    "lineage",
    "reconciliation",
    "tax_class",
    "tolerances",
    "volume",
]
