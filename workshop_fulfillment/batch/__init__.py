# workshop_fulfillment/batch/__init__.py

from .sync_job import (
    run_sync_job,
    sync_supplier_orders,
    recompute_all_parts_summaries,
    check_stock_invariants
)

__all__ = [
    'run_sync_job',
    'sync_supplier_orders',
    'recompute_all_parts_summaries',
    'check_stock_invariants'
]
