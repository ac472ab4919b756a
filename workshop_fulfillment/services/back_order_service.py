# workshop_fulfillment/services/back_order_service.py
import math
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workshop_fulfillment.config import config
from workshop_fulfillment.core.execution_status import load_rules
from workshop_fulfillment.core.parts_summary import parse_complete_statuses
from workshop_fulfillment.models import (
    BackOrder, BackOrderPriority, BackOrderStatus, PartsLine, PartsLineStatus,
    OPEN_BACK_ORDER_STATUSES
)
from workshop_fulfillment.exceptions import (
    ConcurrentModificationError, DatabaseError, DuplicateBackOrder, InvalidReceiptQuantity,
    InvalidTransition, NotFoundError, SupplierError, ValidationError
)
from workshop_fulfillment.results import Result
from workshop_fulfillment.services.inventory_service import InventoryService
from workshop_fulfillment.services.status_sync import sync_work_order_status
from workshop_fulfillment.services.supplier_client import (
    SupplierClient, SUPPLIER_CANCELLED, build_supplier_client
)
from workshop_fulfillment.logging_setup import get_logger

logger = get_logger('back_orders')

PRIORITY_RANK = {
    BackOrderPriority.HIGH: 0,
    BackOrderPriority.NORMAL: 1,
    BackOrderPriority.LOW: 2
}

SYNC_ACTOR = 'supplier-sync'

class BackOrderService:
    """Lifecycle of parts that could not be satisfied from stock.

        PENDING -> ORDERED -> PARTIALLY_RECEIVED -> RECEIVED
        ORDERED -> RECEIVED
        PENDING | ORDERED | PARTIALLY_RECEIVED -> CANCELLED

    Lifecycle operations load the back-order with a row lock and the mapper
    checks its version on flush, so a cancel and a receive on the same
    back-order cannot both win.
    """

    def __init__(
        self,
        session: Session,
        inventory_service: Optional[InventoryService] = None,
        supplier_client: Optional[SupplierClient] = None,
        receipt_tolerance: Optional[int] = None,
        execution_rules=None,
        complete_statuses=None
    ):
        """Initialize the back-order service.

        Args:
            session: Database session
            inventory_service: Ledger used for receipts and releases
            supplier_client: External ordering integration, built from settings if omitted
            receipt_tolerance: Units a back-order may be over-received by
            execution_rules: Rule table for execution labels (settings or defaults if omitted)
            complete_statuses: Summary statuses that count as complete (settings if omitted)
        """
        self.session = session
        self.inventory = inventory_service or InventoryService(session)
        self._supplier = supplier_client

        rules = config.business_rules
        self.receipt_tolerance = rules['receipt_tolerance'] if receipt_tolerance is None else receipt_tolerance
        self.high_priority_days = rules['high_priority_days']
        self.low_priority_days = rules['low_priority_days']

        if execution_rules is None:
            execution_rules = load_rules(config.execution_rules_file)
        self.execution_rules = execution_rules

        if complete_statuses is None:
            complete_statuses = parse_complete_statuses(rules['complete_summary_statuses'])
        self.complete_statuses = complete_statuses

    @property
    def supplier(self) -> SupplierClient:
        if self._supplier is None:
            self._supplier = build_supplier_client()
        return self._supplier

    def _sync(self, work_order):
        return sync_work_order_status(work_order, self.execution_rules, self.complete_statuses)

    def get_back_order(self, back_order_id: int) -> Optional[BackOrder]:
        """Get a back-order by ID."""
        return self.session.get(BackOrder, back_order_id)

    def _lock(self, back_order_id: int) -> BackOrder:
        back_order = self.session.query(BackOrder).filter(
            BackOrder.id == back_order_id
        ).with_for_update().populate_existing().first()

        if back_order is None:
            raise NotFoundError(f"Back-order with ID {back_order_id} not found")
        return back_order

    def _flush(self, back_order: BackOrder):
        try:
            self.session.flush()
        except StaleDataError:
            self.session.rollback()
            raise ConcurrentModificationError(
                f"Back-order {back_order.id} was changed by another request; reload and retry",
                details={'back_order_id': back_order.id}
            )
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to update back-order {back_order.id}: {str(e)}")

    def _commit(self, action: str):
        try:
            self.session.commit()
        except StaleDataError:
            self.session.rollback()
            raise ConcurrentModificationError(f"Back-order changed concurrently while trying to {action}")
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to {action}: {str(e)}")

    def _invalid_transition(self, back_order: BackOrder, action: str) -> Result:
        logger.info(f"Rejected {action} for back-order {back_order.id} in status {back_order.status.value}")
        return Result.failure(InvalidTransition(
            f"Cannot {action} back-order {back_order.id} with status {back_order.status.value}",
            code='INVALID_TRANSITION',
            details={'back_order_id': back_order.id, 'status': back_order.status.value, 'action': action}
        ))

    def calculate_priority(self, scheduled_at: Optional[datetime], now: Optional[datetime] = None) -> BackOrderPriority:
        """Derive priority from how soon the work order is scheduled.

        Args:
            scheduled_at: When the work order is planned
            now: Reference time (defaults to current date/time)

        Returns:
            HIGH within high_priority_days, LOW beyond low_priority_days, else NORMAL
        """
        if scheduled_at is None:
            return BackOrderPriority.NORMAL

        now = now or datetime.now()
        days_until = math.ceil((scheduled_at - now).total_seconds() / 86400)

        if days_until <= self.high_priority_days:
            return BackOrderPriority.HIGH
        if days_until > self.low_priority_days:
            return BackOrderPriority.LOW
        return BackOrderPriority.NORMAL

    def create_back_order(
        self,
        parts_line_id: int,
        quantity_needed: Optional[int] = None,
        priority=None,
        notes: Optional[str] = None,
        actor: Optional[str] = None
    ) -> Result:
        """Open a back-order for a parts line shortfall.

        Args:
            parts_line_id: Parts line that cannot be satisfied from stock
            quantity_needed: Shortfall; defaults to the unreserved part of the line
            priority: Optional BackOrderPriority; derived from the schedule if omitted
            notes: Free text
            actor: User creating the back-order

        Returns:
            Result with the new BackOrder, or DuplicateBackOrder
        """
        line = self.session.get(PartsLine, parts_line_id)
        if line is None:
            raise NotFoundError(f"Parts line with ID {parts_line_id} not found")

        if self.has_active_back_order(parts_line_id):
            return self._duplicate(parts_line_id)

        if quantity_needed is None:
            quantity_needed = line.quantity - (line.quantity_reserved or 0)
        if isinstance(quantity_needed, bool) or not isinstance(quantity_needed, int) or quantity_needed <= 0:
            raise ValidationError(f"Back-order quantity must be a positive integer, got {quantity_needed!r}")

        work_order = line.work_order
        if priority is None:
            priority = self.calculate_priority(work_order.scheduled_at)
        else:
            priority = BackOrderPriority.from_code(priority)

        back_order = BackOrder(
            parts_line=line,
            work_order=work_order,
            product_id=line.product_id,
            product_name=line.product_name or (line.product.name if line.product else None),
            sku=line.sku,
            open_parts_line_id=line.id,
            quantity_needed=quantity_needed,
            quantity_received=0,
            status=BackOrderStatus.PENDING,
            priority=priority,
            work_order_scheduled=work_order.scheduled_at,
            notes=notes,
            created_by=actor
        )
        self.session.add(back_order)

        try:
            self.session.commit()
        except IntegrityError:
            # Another request opened a back-order for this line first
            self.session.rollback()
            return self._duplicate(parts_line_id)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to create back-order: {str(e)}")

        logger.info(
            f"Created back-order {back_order.id} for parts line {parts_line_id} "
            f"({quantity_needed} x {back_order.sku or back_order.product_name}, priority {priority.value})"
        )
        return Result.success(back_order)

    def _duplicate(self, parts_line_id: int) -> Result:
        logger.warning(f"Parts line {parts_line_id} already has an open back-order")
        return Result.failure(DuplicateBackOrder(
            f"Parts line {parts_line_id} already has an open back-order",
            code='DUPLICATE_BACK_ORDER',
            details={'parts_line_id': parts_line_id}
        ))

    def mark_ordered(
        self,
        back_order_id: int,
        supplier: str,
        order_date: date,
        quantity_ordered: int,
        expected_date: Optional[date] = None,
        reference: Optional[str] = None,
        unit_cost: Optional[float] = None,
        actor: Optional[str] = None
    ) -> Result:
        """Record that the supplier order was placed. Inventory is untouched.

        Returns:
            Result with the BackOrder, or InvalidTransition
        """
        if isinstance(quantity_ordered, bool) or not isinstance(quantity_ordered, int) or quantity_ordered <= 0:
            raise ValidationError(f"Ordered quantity must be a positive integer, got {quantity_ordered!r}")
        if not supplier:
            raise ValidationError("Supplier is required")

        back_order = self._lock(back_order_id)
        if back_order.status is not BackOrderStatus.PENDING:
            self._commit('mark back-order ordered')
            return self._invalid_transition(back_order, 'mark ordered')

        back_order.status = BackOrderStatus.ORDERED
        back_order.supplier = supplier
        back_order.order_date = order_date
        back_order.expected_date = expected_date
        back_order.order_reference = reference
        back_order.quantity_ordered = quantity_ordered
        back_order.unit_cost = unit_cost
        back_order.total_cost = unit_cost * quantity_ordered if unit_cost is not None else None
        back_order.updated_by = actor

        line = back_order.parts_line
        if line is not None:
            line.status = PartsLineStatus.ORDERED
            self._sync(line.work_order)

        self._flush(back_order)
        self._commit('mark back-order ordered')

        logger.info(
            f"Back-order {back_order.id} ordered at {supplier}: {quantity_ordered} units, "
            f"reference {reference}, expected {expected_date}"
        )
        return Result.success(back_order)

    def order_via_external_supplier(self, back_order_id: int, actor: Optional[str] = None) -> Result:
        """Place the order through the supplier API and mark the back-order ordered.

        On any supplier failure or timeout the back-order stays PENDING and the
        error is returned.
        """
        back_order = self.get_back_order(back_order_id)
        if back_order is None:
            raise NotFoundError(f"Back-order with ID {back_order_id} not found")

        if back_order.status is not BackOrderStatus.PENDING:
            return self._invalid_transition(back_order, 'order via supplier')

        if not back_order.sku:
            return Result.failure(SupplierError(
                f"Back-order {back_order_id} has no SKU to order", code='SUPPLIER_NO_SKU'
            ))

        quantity = back_order.quantity_needed
        sku = back_order.sku
        unit_cost = back_order.product.unit_cost if back_order.product is not None else None

        # No row lock is held across the network call
        self.session.commit()

        try:
            supplier_order = self.supplier.place_order(sku, quantity)
        except SupplierError as e:
            logger.error(f"Ordering back-order {back_order_id} via {self.supplier.name} failed: {str(e)}")
            return Result.failure(e)

        result = self.mark_ordered(
            back_order_id,
            supplier=self.supplier.name,
            order_date=date.today(),
            quantity_ordered=quantity,
            expected_date=supplier_order.eta,
            reference=supplier_order.reference,
            unit_cost=unit_cost,
            actor=actor
        )
        if not result.ok:
            logger.error(
                f"Supplier order {supplier_order.reference} was placed but back-order "
                f"{back_order_id} could not be marked ordered: {result.error}"
            )
        return result

    def sync_external_status(self, back_order_id: int) -> Result:
        """Reconcile a back-order with the supplier's view of its order.

        Newly received quantity is booked through receive(), a supplier side
        cancellation through cancel(). Running it again without a supplier
        side change does nothing.
        """
        back_order = self.get_back_order(back_order_id)
        if back_order is None:
            raise NotFoundError(f"Back-order with ID {back_order_id} not found")

        if not back_order.is_open:
            return Result.success(back_order)

        if not back_order.order_reference:
            return self._invalid_transition(back_order, 'sync without supplier reference')

        reference = back_order.order_reference
        local_received = back_order.quantity_received or 0
        self.session.commit()

        try:
            remote = self.supplier.get_order_status(reference)
        except SupplierError as e:
            logger.warning(f"Status sync for back-order {back_order_id} ({reference}) failed: {str(e)}")
            return Result.failure(e)

        if remote.status == SUPPLIER_CANCELLED:
            return self.cancel(back_order_id, f"Cancelled by {self.supplier.name}", actor=SYNC_ACTOR)

        delta = remote.received_quantity - local_received
        if delta > 0:
            return self.receive(back_order_id, delta, actor=SYNC_ACTOR)

        if delta < 0:
            logger.warning(
                f"Supplier reports {remote.received_quantity} received for {reference}, "
                f"local total is {local_received}; leaving back-order {back_order_id} unchanged"
            )
        return Result.success(back_order)

    def receive(self, back_order_id: int, quantity_received: int, actor: Optional[str] = None) -> Result:
        """Book a (partial) receipt against a back-order.

        Received goods go into stock and are reserved for the work order.
        Full receipt closes the back-order and marks the parts line RECEIVED.

        Returns:
            Result with the BackOrder, InvalidReceiptQuantity or InvalidTransition
        """
        if isinstance(quantity_received, bool) or not isinstance(quantity_received, int) or quantity_received <= 0:
            return Result.failure(InvalidReceiptQuantity(
                f"Received quantity must be a positive integer, got {quantity_received!r}",
                code='INVALID_RECEIPT_QUANTITY',
                details={'back_order_id': back_order_id, 'quantity_received': quantity_received}
            ))

        back_order = self._lock(back_order_id)
        if back_order.status not in (BackOrderStatus.ORDERED, BackOrderStatus.PARTIALLY_RECEIVED):
            self._commit('receive back-order')
            return self._invalid_transition(back_order, 'receive')

        ordered = back_order.quantity_ordered or back_order.quantity_needed
        new_total = (back_order.quantity_received or 0) + quantity_received

        if new_total > ordered + self.receipt_tolerance:
            self._commit('receive back-order')
            logger.warning(
                f"Over-receipt rejected for back-order {back_order.id}: "
                f"{new_total} received against {ordered} ordered"
            )
            return Result.failure(InvalidReceiptQuantity(
                f"Receiving {quantity_received} would bring back-order {back_order.id} to "
                f"{new_total}, more than the {ordered} ordered",
                code='OVER_RECEIPT',
                details={
                    'back_order_id': back_order.id,
                    'quantity_ordered': ordered,
                    'quantity_received': back_order.quantity_received,
                    'attempted': quantity_received
                }
            ))

        fully_received = new_total >= ordered
        line = back_order.parts_line

        back_order.quantity_received = new_total
        back_order.updated_by = actor
        if fully_received:
            back_order.status = BackOrderStatus.RECEIVED
            back_order.received_date = date.today()
            back_order.open_parts_line_id = None
        else:
            back_order.status = BackOrderStatus.PARTIALLY_RECEIVED

        if line is not None:
            line.status = PartsLineStatus.RECEIVED if fully_received else PartsLineStatus.PARTIALLY_RECEIVED

        self._flush(back_order)

        # Ledger writes join this transaction; the back-order stays locked until the commit below
        job_ref = back_order.work_order.job_ref
        if back_order.sku and self.inventory.get_record(back_order.sku) is not None:
            self.inventory.receive(back_order.sku, quantity_received, reference=job_ref, commit=False)

            reservation = self.inventory.reserve(
                back_order.sku, quantity_received, job_ref, line.id if line is not None else None,
                commit=False
            )
            if reservation.ok and line is not None:
                line.quantity_reserved = (line.quantity_reserved or 0) + quantity_received
            elif not reservation.ok:
                logger.warning(
                    f"Could not reserve received goods for back-order {back_order.id}: {reservation.error}"
                )

        if line is not None:
            self._sync(line.work_order)
        self._commit('receive back-order')

        logger.info(
            f"Back-order {back_order.id} received {quantity_received} "
            f"({new_total}/{ordered}), status {back_order.status.value}"
        )
        return Result.success(back_order)

    def cancel(self, back_order_id: int, reason: str, actor: Optional[str] = None) -> Result:
        """Cancel an open back-order and release what the parts line holds.

        Returns:
            Result with the BackOrder, or InvalidTransition
        """
        if not reason or not str(reason).strip():
            raise ValidationError("A cancellation reason is required")

        back_order = self._lock(back_order_id)
        if back_order.status.is_terminal:
            self._commit('cancel back-order')
            return self._invalid_transition(back_order, 'cancel')

        back_order.status = BackOrderStatus.CANCELLED
        back_order.cancel_reason = reason
        back_order.open_parts_line_id = None
        back_order.updated_by = actor

        line = back_order.parts_line
        if line is not None and line.status in (PartsLineStatus.ORDERED, PartsLineStatus.PARTIALLY_RECEIVED):
            # The shortfall is open again and needs a new decision
            line.status = PartsLineStatus.UNKNOWN

        self._flush(back_order)

        if line is not None and line.sku and line.quantity_reserved:
            released = self.inventory.release(
                line.sku,
                line.quantity_reserved,
                line.work_order.job_ref,
                reason=f"Back-order {back_order.id} cancelled: {reason}",
                parts_line_id=line.id,
                commit=False
            )
            if released.ok:
                line.quantity_reserved = max(0, line.quantity_reserved - released.value)
            else:
                logger.warning(f"Nothing to release for cancelled back-order {back_order.id}: {released.error}")
                line.quantity_reserved = 0

        if line is not None:
            self._sync(line.work_order)
        self._commit('cancel back-order')

        logger.info(f"Back-order {back_order.id} cancelled by {actor}: {reason}")
        return Result.success(back_order)

    def get_active_back_orders(self) -> List[BackOrder]:
        """Open back-orders, high priority and soonest scheduled first."""
        back_orders = self.session.query(BackOrder).filter(
            BackOrder.status.in_(OPEN_BACK_ORDER_STATUSES)
        ).all()
        return sorted(back_orders, key=_urgency_key)

    def get_work_order_back_orders(self, work_order_id: int) -> List[BackOrder]:
        return self.session.query(BackOrder).filter(
            BackOrder.work_order_id == work_order_id
        ).order_by(BackOrder.created_at, BackOrder.id).all()

    def get_product_back_orders(self, product_id: int) -> List[BackOrder]:
        back_orders = self.session.query(BackOrder).filter(
            BackOrder.product_id == product_id,
            BackOrder.status.in_(OPEN_BACK_ORDER_STATUSES)
        ).all()
        return sorted(back_orders, key=_urgency_key)

    def has_active_back_order(self, parts_line_id: int) -> bool:
        count = self.session.query(func.count(BackOrder.id)).filter(
            BackOrder.parts_line_id == parts_line_id,
            BackOrder.status.in_(OPEN_BACK_ORDER_STATUSES)
        ).scalar()
        return count > 0

    def get_back_order_stats(self) -> Dict:
        rows = self.session.query(BackOrder.status, func.count(BackOrder.id)).group_by(BackOrder.status).all()
        by_status = {status: count for status, count in rows}

        high_priority = self.session.query(func.count(BackOrder.id)).filter(
            BackOrder.priority == BackOrderPriority.HIGH,
            BackOrder.status.in_(OPEN_BACK_ORDER_STATUSES)
        ).scalar()

        return {
            'total': sum(by_status.get(status, 0) for status in OPEN_BACK_ORDER_STATUSES),
            'pending': by_status.get(BackOrderStatus.PENDING, 0),
            'ordered': by_status.get(BackOrderStatus.ORDERED, 0),
            'partially_received': by_status.get(BackOrderStatus.PARTIALLY_RECEIVED, 0),
            'high_priority': high_priority
        }

    def sync_all_external(self) -> Dict:
        """Reconcile every open back-order that has a supplier reference."""
        ids = [
            row[0] for row in self.session.query(BackOrder.id).filter(
                BackOrder.status.in_(OPEN_BACK_ORDER_STATUSES),
                BackOrder.order_reference.isnot(None)
            ).order_by(BackOrder.id).all()
        ]

        results = {'synced': 0, 'failed': 0, 'errors': []}
        for back_order_id in ids:
            result = self.sync_external_status(back_order_id)
            if result.ok:
                results['synced'] += 1
            else:
                results['failed'] += 1
                results['errors'].append(f"Back-order {back_order_id}: {result.error}")

        logger.info(f"Supplier sync finished: {results['synced']} synced, {results['failed']} failed")
        return results


def _urgency_key(back_order: BackOrder):
    return (
        PRIORITY_RANK.get(back_order.priority, 1),
        back_order.work_order_scheduled or datetime.max,
        back_order.id
    )
