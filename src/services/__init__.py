from src.services import (
    garden_rules,
    garden_service,
    local_store,
    outbox,
    reconciliation_service,
)


__all__ = [
    "garden_rules",
    "garden_service",
    "local_store",
    "outbox",
    "reconciliation_service",
]
