# workshop_fulfillment/services/inventory_service.py
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from workshop_fulfillment.config import config
from workshop_fulfillment.models import InventoryRecord, StockMove, StockMoveType
from workshop_fulfillment.exceptions import (
    ConcurrentModificationError, DatabaseError, InsufficientStock, NotFoundError,
    NotReserved, ValidationError
)
from workshop_fulfillment.results import Result
from workshop_fulfillment.logging_setup import get_logger

logger = get_logger('inventory')

class InventoryService:
    """Inventory ledger: the only writer of on-hand and reserved quantities.

    Every mutation is a single conditional UPDATE whose WHERE clause carries
    the guard, so concurrent handlers touching the same SKU serialize on the
    row instead of racing through a read-compute-write sequence. Each
    operation commits on its own unless the caller passes commit=False to
    keep it inside a transaction the caller owns.
    """

    def __init__(self, session: Session, release_retry_limit: Optional[int] = None):
        """Initialize the inventory service.

        Args:
            session: Database session
            release_retry_limit: Attempts for the optimistic clamp loop in release()
        """
        self.session = session
        self.release_retry_limit = release_retry_limit or config.business_rules['release_retry_limit']

    def get_record(self, sku: str) -> Optional[InventoryRecord]:
        """Get the inventory record for a SKU."""
        return self.session.query(InventoryRecord).filter(InventoryRecord.sku == sku).first()

    def _require_positive(self, quantity) -> int:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")
        return quantity

    def _guarded_update(self, record_id: int, guards: list, values: dict) -> int:
        """Apply values to one inventory row iff all guards hold. Returns matched rows."""
        return self.session.query(InventoryRecord).filter(
            InventoryRecord.id == record_id, *guards
        ).update(values, synchronize_session=False)

    def _add_move(self, record: InventoryRecord, move_type: StockMoveType, quantity: int,
                  reference: Optional[str], parts_line_id: Optional[int] = None,
                  notes: Optional[str] = None) -> StockMove:
        move = StockMove(
            product_id=record.product_id,
            sku=record.sku,
            move_type=move_type,
            quantity=quantity,
            reference=reference,
            parts_line_id=parts_line_id,
            notes=notes
        )
        self.session.add(move)
        return move

    def _commit(self, action: str, sku: str, commit: bool = True):
        try:
            if commit:
                self.session.commit()
            else:
                self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to {action} for SKU {sku}: {str(e)}")

    def reserve(
        self,
        sku: str,
        quantity: int,
        job_ref: str,
        parts_line_id: Optional[int] = None,
        commit: bool = True
    ) -> Result:
        """Reserve stock for a job.

        Args:
            sku: Stock keeping unit
            quantity: Units to reserve
            job_ref: Work order reference the reservation is held for
            parts_line_id: Optional parts line the reservation belongs to
            commit: False to flush into a transaction the caller commits

        Returns:
            Result with the reservation id (None for non-stock items),
            or InsufficientStock
        """
        quantity = self._require_positive(quantity)
        record = self.get_record(sku)

        if record is None:
            logger.warning(f"Reserve {quantity} x {sku} for {job_ref}: SKU has no inventory record")
            return Result.failure(InsufficientStock(
                f"No inventory record for SKU {sku}",
                code='INSUFFICIENT_STOCK',
                details={'sku': sku, 'requested': quantity, 'available': 0}
            ))

        if not record.manage_stock:
            return Result.success(None)

        try:
            updated = self._guarded_update(
                record.id,
                [InventoryRecord.quantity_on_hand - InventoryRecord.quantity_reserved >= quantity],
                {InventoryRecord.quantity_reserved: InventoryRecord.quantity_reserved + quantity}
            )
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to reserve stock for SKU {sku}: {str(e)}")

        self.session.expire(record)

        if not updated:
            available = record.quantity_available
            # Nothing changed; end the transaction so the row lock is not held
            self._commit('reserve stock', sku, commit)
            logger.info(
                f"Insufficient stock for {job_ref}: {sku} available={available}, requested={quantity}"
            )
            return Result.failure(InsufficientStock(
                f"Insufficient stock for SKU {sku}. Available: {available}, needed: {quantity}",
                code='INSUFFICIENT_STOCK',
                details={'sku': sku, 'requested': quantity, 'available': available}
            ))

        move = self._add_move(
            record, StockMoveType.RESERVED, quantity, job_ref, parts_line_id,
            notes=f"Reserved for work order {job_ref}"
        )
        self._commit('reserve stock', sku, commit)

        logger.info(f"Reserved {quantity} x {sku} for {job_ref} (reservation {move.id})")
        return Result.success(move.id)

    def release(
        self,
        sku: str,
        quantity: int,
        job_ref: str,
        reason: str = 'Part removed from work order',
        parts_line_id: Optional[int] = None,
        commit: bool = True
    ) -> Result:
        """Release reserved stock.

        A release larger than the current reservation clamps the reservation
        to zero and logs a warning.

        Returns:
            Result with the released quantity, or NotReserved
        """
        quantity = self._require_positive(quantity)
        record = self.get_record(sku)

        if record is None:
            return Result.failure(NotReserved(
                f"No inventory record for SKU {sku}",
                code='NOT_RESERVED',
                details={'sku': sku, 'requested': quantity}
            ))

        if not record.manage_stock:
            return Result.success(0)

        released = None
        try:
            for _ in range(self.release_retry_limit):
                updated = self._guarded_update(
                    record.id,
                    [InventoryRecord.quantity_reserved >= quantity],
                    {InventoryRecord.quantity_reserved: InventoryRecord.quantity_reserved - quantity}
                )
                if updated:
                    released = quantity
                    break

                current = self.session.query(InventoryRecord.quantity_reserved).filter(
                    InventoryRecord.id == record.id
                ).scalar()
                if not current:
                    self.session.expire(record)
                    self._commit('release stock', sku, commit)
                    return Result.failure(NotReserved(
                        f"Nothing reserved for SKU {sku}",
                        code='NOT_RESERVED',
                        details={'sku': sku, 'requested': quantity, 'reserved': 0}
                    ))

                # Clamp only if nobody changed the reservation since it was read
                updated = self._guarded_update(
                    record.id,
                    [InventoryRecord.quantity_reserved == current],
                    {InventoryRecord.quantity_reserved: 0}
                )
                if updated:
                    logger.warning(
                        f"Release of {quantity} x {sku} for {job_ref} exceeds reservation "
                        f"of {current}; clamped to zero"
                    )
                    released = current
                    break
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to release stock for SKU {sku}: {str(e)}")

        self.session.expire(record)

        if released is None:
            self.session.rollback()
            raise ConcurrentModificationError(
                f"Reservation for SKU {sku} kept changing; release of {quantity} abandoned",
                details={'sku': sku, 'attempts': self.release_retry_limit}
            )

        self._add_move(
            record, StockMoveType.RELEASED, -released, job_ref, parts_line_id, notes=reason
        )
        self._commit('release stock', sku, commit)

        logger.info(f"Released {released} x {sku} for {job_ref}: {reason}")
        return Result.success(released)

    def receive(
        self, sku: str, quantity: int, reference: Optional[str] = None, commit: bool = True
    ) -> Optional[int]:
        """Book goods into stock. Does not reserve anything.

        Returns:
            Id of the inbound stock move, None for non-stock items

        Raises:
            NotFoundError if the SKU has no inventory record
        """
        quantity = self._require_positive(quantity)
        record = self.get_record(sku)

        if record is None:
            raise NotFoundError(f"No inventory record for SKU {sku}")

        if not record.manage_stock:
            return None

        try:
            self._guarded_update(
                record.id,
                [],
                {InventoryRecord.quantity_on_hand: InventoryRecord.quantity_on_hand + quantity}
            )
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to receive stock for SKU {sku}: {str(e)}")

        self.session.expire(record)
        move = self._add_move(record, StockMoveType.IN, quantity, reference, notes="Goods received")
        self._commit('receive stock', sku, commit)

        logger.info(f"Received {quantity} x {sku} into stock ({reference})")
        return move.id

    def consume(
        self,
        sku: str,
        quantity: int,
        job_ref: str,
        parts_line_id: Optional[int] = None
    ) -> Result:
        """Turn a reservation into an outbound move (parts leave the shelf).

        Returns:
            Result with the outbound move id, or NotReserved
        """
        quantity = self._require_positive(quantity)
        record = self.get_record(sku)

        if record is None:
            return Result.failure(NotReserved(f"No inventory record for SKU {sku}", code='NOT_RESERVED'))

        if not record.manage_stock:
            return Result.success(None)

        try:
            updated = self._guarded_update(
                record.id,
                [
                    InventoryRecord.quantity_reserved >= quantity,
                    InventoryRecord.quantity_on_hand >= quantity
                ],
                {
                    InventoryRecord.quantity_on_hand: InventoryRecord.quantity_on_hand - quantity,
                    InventoryRecord.quantity_reserved: InventoryRecord.quantity_reserved - quantity
                }
            )
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DatabaseError(f"Failed to consume stock for SKU {sku}: {str(e)}")

        self.session.expire(record)

        if not updated:
            reserved = record.quantity_reserved
            self._commit('consume stock', sku)
            return Result.failure(NotReserved(
                f"Cannot consume {quantity} x {sku}: not reserved for {job_ref}",
                code='NOT_RESERVED',
                details={'sku': sku, 'requested': quantity, 'reserved': reserved}
            ))

        move = self._add_move(
            record, StockMoveType.OUT, -quantity, job_ref, parts_line_id,
            notes=f"Issued to work order {job_ref}"
        )
        self._commit('consume stock', sku)

        logger.info(f"Consumed {quantity} x {sku} for {job_ref}")
        return Result.success(move.id)

    def adjust_for_quantity_change(
        self,
        sku: str,
        old_quantity: int,
        new_quantity: int,
        job_ref: str,
        parts_line_id: Optional[int] = None
    ) -> Result:
        """Keep a reservation in line with a changed parts line quantity."""
        diff = new_quantity - old_quantity

        if diff > 0:
            return self.reserve(sku, diff, job_ref, parts_line_id)
        if diff < 0:
            return self.release(
                sku, -diff, job_ref, reason='Parts line quantity reduced', parts_line_id=parts_line_id
            )
        return Result.success(None)

    def get_available_quantity(self, sku: str) -> Optional[int]:
        """Unreserved on-hand quantity; None for non-stock items, 0 for unknown SKUs."""
        record = self.get_record(sku)
        if record is None:
            return 0
        return record.quantity_available

    def get_inventory_summary(self, sku: str) -> Dict:
        record = self.get_record(sku)

        if record is None:
            return {
                'sku': sku,
                'quantity_on_hand': 0,
                'quantity_reserved': 0,
                'quantity_available': 0,
                'manage_stock': True,
                'is_in_stock': False
            }

        available = record.quantity_available
        return {
            'sku': sku,
            'quantity_on_hand': record.quantity_on_hand,
            'quantity_reserved': record.quantity_reserved,
            'quantity_available': available,
            'manage_stock': record.manage_stock,
            'is_in_stock': (not record.manage_stock) or record.quantity_on_hand > 0
        }

    def get_stock_moves(self, sku: Optional[str] = None, reference: Optional[str] = None) -> List[StockMove]:
        query = self.session.query(StockMove)

        if sku is not None:
            query = query.filter(StockMove.sku == sku)

        if reference is not None:
            query = query.filter(StockMove.reference == reference)

        return query.order_by(StockMove.id).all()

    def check_invariants(self) -> List[Dict]:
        """Return every managed SKU whose quantities break the ledger invariant."""
        violations = []

        records = self.session.query(InventoryRecord).filter(InventoryRecord.manage_stock.is_(True)).all()
        for record in records:
            if (record.quantity_reserved < 0 or record.quantity_on_hand < 0
                    or record.quantity_reserved > record.quantity_on_hand):
                violations.append({
                    'sku': record.sku,
                    'quantity_on_hand': record.quantity_on_hand,
                    'quantity_reserved': record.quantity_reserved
                })

        for violation in violations:
            logger.error(f"Inventory invariant violated: {violation}")

        return violations
