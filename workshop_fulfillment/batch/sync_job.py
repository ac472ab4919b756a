# workshop_fulfillment/batch/sync_job.py
from datetime import datetime
from typing import Dict, Optional

from workshop_fulfillment.db import session_scope
from workshop_fulfillment.models import WorkOrder, WorkOrderStatus
from workshop_fulfillment.services.inventory_service import InventoryService
from workshop_fulfillment.services.back_order_service import BackOrderService
from workshop_fulfillment.services.supplier_client import SupplierClient
from workshop_fulfillment.services.work_order_service import WorkOrderService
from workshop_fulfillment.exceptions import BatchProcessError, FulfillmentError
from workshop_fulfillment.logging_setup import logger as log_manager, get_logger

logger = get_logger('sync_job')

CLOSED_WORK_ORDER_STATUSES = (WorkOrderStatus.DONE, WorkOrderStatus.CANCELLED)

def sync_supplier_orders(supplier_client: Optional[SupplierClient] = None) -> Dict:
    """Reconcile every open back-order that was ordered through a supplier.

    Args:
        supplier_client: Optional client (defaults to the one in settings)

    Returns:
        Dictionary with sync results
    """
    logger.info("Syncing open back-orders with supplier")

    with session_scope() as session:
        service = BackOrderService(session, supplier_client=supplier_client)
        results = service.sync_all_external()

    return results

def recompute_all_parts_summaries(include_closed: bool = False) -> Dict:
    """Rebuild the cached parts summary of every work order from its lines.

    A cached value that differs from the recomputed one counts as drift.

    Returns:
        Dictionary with recompute results
    """
    logger.info("Recomputing parts summaries")

    results = {'processed': 0, 'drifted': 0, 'drift': []}

    with session_scope() as session:
        service = WorkOrderService(session)

        query = session.query(WorkOrder.id, WorkOrder.parts_summary_status)
        if not include_closed:
            query = query.filter(WorkOrder.work_order_status.notin_(CLOSED_WORK_ORDER_STATUSES))

        for work_order_id, cached in query.order_by(WorkOrder.id).all():
            summary = service.recompute_parts_summary(work_order_id)
            results['processed'] += 1

            if cached is not summary:
                results['drifted'] += 1
                results['drift'].append({
                    'work_order_id': work_order_id,
                    'cached': cached.value if cached is not None else None,
                    'recomputed': summary.value
                })

    if results['drifted']:
        logger.warning(f"{results['drifted']} of {results['processed']} parts summaries were stale")

    return results

def check_stock_invariants() -> Dict:
    """Report SKUs whose reserved quantity exceeds what is on hand."""
    logger.info("Checking inventory invariants")

    with session_scope() as session:
        violations = InventoryService(session).check_invariants()

    return {
        'success': not violations,
        'violations': violations
    }

def run_sync_job(supplier_client: Optional[SupplierClient] = None, skip_supplier: bool = False) -> Dict:
    """Run the periodic fulfillment job.

    Args:
        supplier_client: Optional supplier client for the sync step
        skip_supplier: Skip the supplier sync step

    Returns:
        Dictionary with job results
    """
    log_info = log_manager.batch_start_log('fulfillment_sync', {'skip_supplier': skip_supplier})
    start_time = datetime.now()

    results = {
        'start_time': start_time,
        'end_time': None,
        'duration': None,
        'processes': {}
    }

    try:
        # Step 1: Pull supplier receipts and cancellations
        if not skip_supplier:
            results['processes']['sync_supplier_orders'] = sync_supplier_orders(supplier_client)

        # Step 2: Rebuild cached summaries
        results['processes']['recompute_parts_summaries'] = recompute_all_parts_summaries()

        # Step 3: Ledger sanity check
        results['processes']['check_stock_invariants'] = check_stock_invariants()

        results['success'] = True
    except FulfillmentError as e:
        log_manager.log_exception('sync_job', e, "Error during fulfillment sync job")
        results['success'] = False
        results['error'] = str(e)
    finally:
        results['end_time'] = datetime.now()
        results['duration'] = results['end_time'] - start_time

    log_manager.batch_end_log(log_info, success=results['success'], result_info={
        name: {k: v for k, v in process.items() if k not in ('errors', 'drift', 'violations')}
        for name, process in results['processes'].items()
    })

    if not results['success']:
        raise BatchProcessError(
            f"Fulfillment sync job failed: {results['error']}",
            details={'processes': list(results['processes'])}
        )

    return results

if __name__ == "__main__":
    run_sync_job()
