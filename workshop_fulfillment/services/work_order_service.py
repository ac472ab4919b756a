# workshop_fulfillment/services/work_order_service.py
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from workshop_fulfillment.config import config
from workshop_fulfillment.core.parts_summary import (
    count_by_status, is_complete, missing_lines, parse_complete_statuses
)
from workshop_fulfillment.core.status_resolver import resolve_transition
from workshop_fulfillment.core.execution_status import load_rules
from workshop_fulfillment.models import (
    PartsLine, PartsLineStatus, PlanningRiskEvent, Product, WorkOrder, WorkOrderStatus,
    WorkOrderStatusHistory
)
from workshop_fulfillment.exceptions import (
    DatabaseError, InvalidTransition, NotFoundError, ValidationError
)
from workshop_fulfillment.results import Result
from workshop_fulfillment.services.inventory_service import InventoryService
from workshop_fulfillment.services.back_order_service import BackOrderService
from workshop_fulfillment.services.status_sync import sync_work_order_status
from workshop_fulfillment.logging_setup import get_logger

logger = get_logger('work_orders')

class WorkOrderService:
    """Persistence side of work order fulfillment.

    Keeps the cached parts summary, execution label and planning risk flag
    of a work order in step with its parts lines, and runs requested status
    changes through the status resolver.
    """

    def __init__(
        self,
        session: Session,
        inventory_service: Optional[InventoryService] = None,
        back_order_service: Optional[BackOrderService] = None,
        execution_rules=None,
        complete_statuses=None
    ):
        """Initialize the work order service.

        Args:
            session: Database session
            inventory_service: Ledger for reservations
            back_order_service: Back-order lifecycle for shortfalls
            execution_rules: Rule table for execution labels (settings or defaults if omitted)
            complete_statuses: Summary statuses that count as complete (settings if omitted)
        """
        self.session = session
        self.inventory = inventory_service or InventoryService(session)

        if execution_rules is None:
            execution_rules = load_rules(config.execution_rules_file)
        self.execution_rules = execution_rules

        if complete_statuses is None:
            complete_statuses = parse_complete_statuses(config.business_rules['complete_summary_statuses'])
        self.complete_statuses = complete_statuses

        self.back_orders = back_order_service or BackOrderService(
            session,
            inventory_service=self.inventory,
            execution_rules=self.execution_rules,
            complete_statuses=self.complete_statuses
        )

    def get_work_order(self, work_order_id: int) -> WorkOrder:
        """Get a work order by ID.

        Raises:
            NotFoundError if the work order doesn't exist
        """
        work_order = self.session.get(WorkOrder, work_order_id)
        if work_order is None:
            raise NotFoundError(f"Work order with ID {work_order_id} not found")
        return work_order

    def get_parts_line(self, parts_line_id: int) -> PartsLine:
        line = self.session.get(PartsLine, parts_line_id)
        if line is None:
            raise NotFoundError(f"Parts line with ID {parts_line_id} not found")
        return line

    def _sync(self, work_order: WorkOrder):
        return sync_work_order_status(work_order, self.execution_rules, self.complete_statuses)

    def _commit(self, action: str):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to {action}: {str(e)}")

    def recompute_parts_summary(self, work_order_id: int):
        """Rebuild the cached parts summary from the current parts lines.

        Returns:
            The fresh PartsSummaryStatus
        """
        work_order = self.get_work_order(work_order_id)
        previous = work_order.parts_summary_status

        summary = self._sync(work_order)
        self._commit('recompute parts summary')

        if previous is not None and previous is not summary:
            logger.info(f"{work_order.job_ref}: parts summary {previous.value} -> {summary.value}")
        return summary

    def get_parts_summary(self, work_order_id: int) -> Dict:
        """Parts readiness of a work order, computed from its lines."""
        work_order = self.get_work_order(work_order_id)
        summary = self._sync(work_order)

        return {
            'work_order_id': work_order.id,
            'parts_summary_status': summary.value,
            'is_complete': is_complete(summary, self.complete_statuses),
            'line_counts': count_by_status(work_order.parts_lines),
            'missing_line_ids': [line.id for line in missing_lines(work_order.parts_lines)]
        }

    def get_execution_status(self, work_order_id: int) -> Optional[str]:
        """Execution label derived from the nominal status and fresh parts summary."""
        work_order = self.get_work_order(work_order_id)
        self._sync(work_order)
        return work_order.execution_status

    def change_status(
        self,
        work_order_id: int,
        requested_status,
        override_reason: Optional[str] = None,
        is_privileged: bool = False,
        actor: Optional[str] = None
    ) -> Result:
        """Apply a requested status change.

        The resolver decides the final status; the transition is recorded in
        the status history and scheduling with incomplete parts raises a
        planning risk event.

        Returns:
            Result with the TransitionOutcome, or OverrideRequired

        Raises:
            UnknownStatus if requested_status is not a work order status code
        """
        work_order = self.get_work_order(work_order_id)
        current = work_order.work_order_status
        summary = self._sync(work_order)

        result = resolve_transition(
            current,
            requested_status,
            summary,
            override_reason=override_reason,
            is_privileged=is_privileged,
            complete_statuses=self.complete_statuses
        )

        if not result.ok:
            self._commit('refresh work order status')
            logger.info(f"{work_order.job_ref}: status change rejected by {actor}: {result.error.message}")
            return result

        outcome = result.value
        work_order.work_order_status = outcome.final_status
        work_order.updated_by = actor

        self.session.add(WorkOrderStatusHistory(
            work_order=work_order,
            from_status=current,
            requested_status=outcome.requested_status,
            final_status=outcome.final_status,
            redirected=outcome.redirected,
            override_used=outcome.override_used,
            reason=override_reason,
            actor=actor
        ))

        if outcome.planning_risk:
            self.session.add(PlanningRiskEvent(
                work_order=work_order,
                parts_summary_status=summary,
                override_reason=override_reason,
                actor=actor
            ))
            logger.warning(
                f"Planning risk: {work_order.job_ref} scheduled by {actor} with parts {summary.value}"
            )

        self._sync(work_order)
        self._commit('change work order status')

        if outcome.redirected:
            logger.info(
                f"{work_order.job_ref}: {outcome.requested_status.value} requested, "
                f"held at {outcome.final_status.value} (parts {summary.value})"
            )
        elif outcome.override_used:
            logger.info(f"{work_order.job_ref}: override by {actor}: {override_reason}")
        logger.info(f"{work_order.job_ref}: {current.value} -> {outcome.final_status.value}")

        return result

    def add_parts_line(
        self,
        work_order_id: int,
        quantity: int = 1,
        product_id: Optional[int] = None,
        product_name: Optional[str] = None,
        unit_price: Optional[float] = None,
        actor: Optional[str] = None
    ) -> Result:
        """Add a needed part to a work order and try to cover it from stock.

        Free text lines (no product) start UNKNOWN. Service items that are not
        stock managed are IN_STOCK. Stock items reserve what is available; any
        shortfall gets a back-order and the line waits UNKNOWN until the
        back-order is placed with a supplier.

        Returns:
            Result with the PartsLine
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"Parts line quantity must be a positive integer, got {quantity!r}")

        work_order = self.get_work_order(work_order_id)
        if work_order.work_order_status in (WorkOrderStatus.DONE, WorkOrderStatus.CANCELLED):
            return Result.failure(InvalidTransition(
                f"Cannot add parts to {work_order.job_ref} in status {work_order.work_order_status.value}",
                code='WORK_ORDER_CLOSED'
            ))

        product = None
        if product_id is not None:
            product = self.session.get(Product, product_id)
            if product is None:
                raise NotFoundError(f"Product with ID {product_id} not found")
        elif not product_name:
            raise ValidationError("A parts line needs a product or a description")

        line = PartsLine(
            work_order=work_order,
            product=product,
            product_name=product_name or product.name,
            quantity=quantity,
            unit_price=unit_price if unit_price is not None else (product.unit_cost if product else 0.0),
            quantity_reserved=0,
            status=PartsLineStatus.UNKNOWN
        )
        self.session.add(line)
        self._commit('add parts line')

        shortfall = 0
        record = self.inventory.get_record(product.sku) if product is not None else None

        if product is not None and record is None:
            logger.warning(f"{work_order.job_ref}: {product.sku} has no inventory record; line needs a check")
        elif record is not None and not record.manage_stock:
            line.status = PartsLineStatus.IN_STOCK
        elif record is not None:
            available = record.quantity_available
            to_reserve = min(quantity, available)
            if to_reserve > 0:
                reservation = self.inventory.reserve(product.sku, to_reserve, work_order.job_ref, line.id)
                if reservation.ok:
                    line.quantity_reserved = to_reserve
                else:
                    to_reserve = 0
            shortfall = quantity - to_reserve
            line.status = PartsLineStatus.RESERVED if shortfall == 0 else PartsLineStatus.UNKNOWN

        self._sync(work_order)
        self._commit('add parts line')

        if shortfall > 0:
            back_order = self.back_orders.create_back_order(line.id, shortfall, actor=actor)
            if not back_order.ok:
                logger.warning(f"{work_order.job_ref}: no back-order for line {line.id}: {back_order.error}")

        logger.info(
            f"{work_order.job_ref}: added {quantity} x {line.product_name} "
            f"(reserved {line.quantity_reserved}, short {shortfall})"
        )
        return Result.success(line)

    def update_parts_line_quantity(self, parts_line_id: int, new_quantity: int, actor: Optional[str] = None) -> Result:
        """Change the needed quantity of a line and move its reservation with it.

        A line with an open back-order keeps its quantity; cancel the
        back-order first.

        Returns:
            Result with the PartsLine, or InvalidTransition
        """
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int) or new_quantity <= 0:
            raise ValidationError(f"Parts line quantity must be a positive integer, got {new_quantity!r}")

        line = self.get_parts_line(parts_line_id)
        work_order = line.work_order
        old_quantity = line.quantity

        if new_quantity == old_quantity:
            return Result.success(line)

        if self.back_orders.has_active_back_order(line.id):
            return Result.failure(InvalidTransition(
                f"Parts line {line.id} has an open back-order; cancel it before changing the quantity",
                code='OPEN_BACK_ORDER',
                details={'parts_line_id': line.id}
            ))

        line.quantity = new_quantity
        self._commit('update parts line quantity')

        shortfall = 0
        record = self.inventory.get_record(line.sku) if line.sku else None

        if record is not None and record.manage_stock and line.status not in (
                PartsLineStatus.ISSUED, PartsLineStatus.RETURNED):
            reserved = line.quantity_reserved or 0
            target = min(reserved, new_quantity) if new_quantity < old_quantity else reserved + (new_quantity - old_quantity)

            result = self.inventory.adjust_for_quantity_change(
                line.sku, reserved, target, work_order.job_ref, line.id
            )
            if result.ok:
                if target < reserved:
                    line.quantity_reserved = reserved - (result.value or 0)
                else:
                    line.quantity_reserved = target
            elif target > reserved:
                shortfall = target - reserved
                line.status = PartsLineStatus.UNKNOWN
            else:
                logger.warning(f"Release for parts line {line.id} found nothing reserved: {result.error}")
                line.quantity_reserved = 0

        self._sync(work_order)
        self._commit('update parts line quantity')

        if shortfall > 0:
            back_order = self.back_orders.create_back_order(line.id, shortfall, actor=actor)
            if not back_order.ok:
                logger.warning(f"{work_order.job_ref}: no back-order for line {line.id}: {back_order.error}")

        logger.info(f"{work_order.job_ref}: line {line.id} quantity {old_quantity} -> {new_quantity}")
        return Result.success(line)

    def set_parts_line_status(self, parts_line_id: int, status, actor: Optional[str] = None) -> Result:
        """Set the status of a parts line and refresh the work order.

        Issuing a line consumes its reservation; returning one releases it.

        Returns:
            Result with the PartsLine, or NotReserved when issuing fails

        Raises:
            UnknownStatus if status is not a parts line status code
        """
        new_status = PartsLineStatus.from_code(status)
        line = self.get_parts_line(parts_line_id)
        work_order = line.work_order
        reserved = line.quantity_reserved or 0

        if line.sku and reserved > 0:
            if new_status is PartsLineStatus.ISSUED:
                consumed = self.inventory.consume(line.sku, reserved, work_order.job_ref, line.id)
                if not consumed.ok:
                    return consumed
                line.quantity_reserved = 0
            elif new_status is PartsLineStatus.RETURNED:
                released = self.inventory.release(
                    line.sku, reserved, work_order.job_ref, reason='Parts returned', parts_line_id=line.id
                )
                if not released.ok:
                    logger.warning(f"Nothing reserved for returned line {line.id}: {released.error}")
                line.quantity_reserved = 0

        previous = line.status
        line.status = new_status
        self._sync(work_order)
        self._commit('set parts line status')

        logger.info(f"{work_order.job_ref}: line {line.id} {previous.value} -> {new_status.value} by {actor}")
        return Result.success(line)

    def remove_parts_line(self, parts_line_id: int, actor: Optional[str] = None) -> Result:
        """Remove a parts line and release what it holds.

        Returns:
            Result with the work order id, or InvalidTransition while an
            open back-order references the line
        """
        line = self.get_parts_line(parts_line_id)
        work_order = line.work_order

        if self.back_orders.has_active_back_order(line.id):
            return Result.failure(InvalidTransition(
                f"Parts line {line.id} has an open back-order; cancel it before removing the line",
                code='OPEN_BACK_ORDER',
                details={'parts_line_id': line.id}
            ))

        reserved = line.quantity_reserved or 0
        if line.sku and reserved > 0 and line.status is not PartsLineStatus.ISSUED:
            released = self.inventory.release(
                line.sku, reserved, work_order.job_ref, parts_line_id=line.id
            )
            if not released.ok:
                logger.warning(f"Nothing reserved for removed line {line.id}: {released.error}")

        description = line.product_name
        self.session.delete(line)
        self.session.flush()
        self.session.expire(work_order, ['parts_lines'])

        self._sync(work_order)
        self._commit('remove parts line')

        logger.info(f"{work_order.job_ref}: removed line {parts_line_id} ({description}) by {actor}")
        return Result.success(work_order.id)
