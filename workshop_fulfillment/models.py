# workshop_fulfillment/models.py
from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, Boolean, ForeignKey, Text, Enum,
    Index, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import enum

from workshop_fulfillment.exceptions import UnknownStatus

Base = declarative_base()

class StatusCode(enum.Enum):
    """Closed set of status codes for one status dimension."""

    def __str__(self):
        """Return the string value of the enum."""
        return self.value

    @classmethod
    def from_code(cls, value):
        """Create a status from a member, a code value or a member name.

        Args:
            value: Enum member, code value ('GEPLAND') or member name ('SCHEDULED')

        Returns:
            Enum member

        Raises:
            UnknownStatus if the code is not part of the closed set
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            code = value.strip().upper()
            try:
                return cls(code)
            except ValueError:
                if code in cls.__members__:
                    return cls.__members__[code]
        valid = ', '.join(member.value for member in cls)
        raise UnknownStatus(
            f"Invalid {cls.__name__} code: {value!r}. Valid values are: {valid}",
            code='UNKNOWN_STATUS',
            details={'dimension': cls.__name__, 'value': repr(value)}
        )

class PartsLineStatus(StatusCode):
    UNKNOWN = 'UNKNOWN'
    IN_STOCK = 'IN_STOCK'
    RESERVED = 'RESERVED'
    ORDERED = 'ORDERED'
    PARTIALLY_RECEIVED = 'PARTIALLY_RECEIVED'
    RECEIVED = 'RECEIVED'
    STAGED = 'STAGED'
    ISSUED = 'ISSUED'
    RETURNED = 'RETURNED'

class PartsSummaryStatus(StatusCode):
    NO_PARTS_NEEDED = 'NO_PARTS_NEEDED'
    UNKNOWN = 'UNKNOWN'
    NEEDS_CHECK = 'NEEDS_CHECK'
    INCOMPLETE = 'INCOMPLETE'
    IN_TRANSIT = 'IN_TRANSIT'
    READY_TO_STAGE = 'READY_TO_STAGE'
    FULLY_STAGED = 'FULLY_STAGED'
    FULLY_ISSUED = 'FULLY_ISSUED'

class WorkOrderStatus(StatusCode):
    """Nominal work order status.

    Values are the workshop's own codes; member names are the English aliases.
    """
    NEW = 'NIEUW'
    APPROVED = 'GOEDGEKEURD'
    SCHEDULED = 'GEPLAND'
    IN_PROGRESS = 'IN_UITVOERING'
    WAITING_ON_PARTS = 'WACHTEN_OP_ONDERDELEN'
    DONE = 'GEREED'
    CANCELLED = 'GEANNULEERD'

class BackOrderStatus(StatusCode):
    PENDING = 'PENDING'
    ORDERED = 'ORDERED'
    PARTIALLY_RECEIVED = 'PARTIALLY_RECEIVED'
    RECEIVED = 'RECEIVED'
    CANCELLED = 'CANCELLED'

    @property
    def is_terminal(self):
        return self in (BackOrderStatus.RECEIVED, BackOrderStatus.CANCELLED)

class BackOrderPriority(StatusCode):
    HIGH = 'HIGH'
    NORMAL = 'NORMAL'
    LOW = 'LOW'

class StockMoveType(StatusCode):
    RESERVED = 'RESERVED'
    RELEASED = 'RELEASED'
    IN = 'IN'
    OUT = 'OUT'

OPEN_BACK_ORDER_STATUSES = (
    BackOrderStatus.PENDING,
    BackOrderStatus.ORDERED,
    BackOrderStatus.PARTIALLY_RECEIVED
)

# Persist the workshop codes (GEPLAND), not the member names
WORK_ORDER_STATUS_TYPE = Enum(
    WorkOrderStatus,
    name='work_order_status',
    values_callable=lambda statuses: [status.value for status in statuses]
)

class Product(Base):
    __tablename__ = 'product'

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    unit_cost = Column(Float, default=0.0)

    # Reorder metadata, maintained by catalog management
    reorder_point = Column(Integer, default=0)
    reorder_quantity = Column(Integer, default=0)

    inventory = relationship("InventoryRecord", back_populates="product", uselist=False)
    parts_lines = relationship("PartsLine", back_populates="product")

class InventoryRecord(Base):
    __tablename__ = 'inventory_record'

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey('product.id'), nullable=False, unique=True)
    sku = Column(String(64), nullable=False, unique=True)

    quantity_on_hand = Column(Integer, nullable=False, default=0)
    quantity_reserved = Column(Integer, nullable=False, default=0)
    # False for labour/service items that are always available
    manage_stock = Column(Boolean, nullable=False, default=True)

    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="inventory")

    __table_args__ = (
        CheckConstraint('quantity_on_hand >= 0', name='ck_inventory_on_hand_non_negative'),
        CheckConstraint('quantity_reserved >= 0', name='ck_inventory_reserved_non_negative'),
        CheckConstraint(
            'NOT manage_stock OR quantity_reserved <= quantity_on_hand',
            name='ck_inventory_reserved_within_on_hand'
        ),
    )

    @property
    def quantity_available(self):
        if not self.manage_stock:
            return None
        return max(0, (self.quantity_on_hand or 0) - (self.quantity_reserved or 0))

class StockMove(Base):
    """Audit trail entry for one inventory ledger mutation."""
    __tablename__ = 'stock_move'

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey('product.id'))
    sku = Column(String(64), nullable=False)
    move_type = Column(Enum(StockMoveType), nullable=False)
    quantity = Column(Integer, nullable=False)  # Negative = release or outbound
    reference = Column(String(100))
    parts_line_id = Column(Integer, ForeignKey('parts_line.id', ondelete='SET NULL'))
    notes = Column(Text)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        Index('idx_stock_move_sku', 'sku'),
        Index('idx_stock_move_reference', 'reference'),
    )

class WorkOrder(Base):
    __tablename__ = 'work_order'

    id = Column(Integer, primary_key=True)
    work_order_number = Column(String(30), nullable=False, unique=True)
    customer_name = Column(String(200))
    vehicle_plate = Column(String(20))
    scheduled_at = Column(DateTime)

    work_order_status = Column(WORK_ORDER_STATUS_TYPE, nullable=False, default=WorkOrderStatus.NEW)
    # Cache of aggregate(parts_lines); refreshed on every parts line write
    parts_summary_status = Column(
        Enum(PartsSummaryStatus), nullable=False, default=PartsSummaryStatus.NO_PARTS_NEEDED
    )
    execution_status = Column(String(50))
    planning_risk_active = Column(Boolean, default=False)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    updated_by = Column(String(100))

    parts_lines = relationship("PartsLine", back_populates="work_order", order_by="PartsLine.id")
    back_orders = relationship("BackOrder", back_populates="work_order")
    status_history = relationship(
        "WorkOrderStatusHistory", back_populates="work_order", order_by="WorkOrderStatusHistory.id"
    )
    planning_risk_events = relationship("PlanningRiskEvent", back_populates="work_order")

    @property
    def job_ref(self):
        return f"WO-{self.work_order_number}"

class PartsLine(Base):
    __tablename__ = 'parts_line'

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey('work_order.id'), nullable=False)
    product_id = Column(Integer, ForeignKey('product.id'))
    product_name = Column(String(200))

    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, default=0.0)
    # Quantity the inventory ledger currently holds for this line
    quantity_reserved = Column(Integer, nullable=False, default=0)

    status = Column(Enum(PartsLineStatus), nullable=False, default=PartsLineStatus.UNKNOWN)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    work_order = relationship("WorkOrder", back_populates="parts_lines")
    product = relationship("Product", back_populates="parts_lines")
    back_orders = relationship("BackOrder", back_populates="parts_line")

    __table_args__ = (
        Index('idx_parts_line_work_order', 'work_order_id'),
    )

    @property
    def sku(self):
        return self.product.sku if self.product is not None else None

class BackOrder(Base):
    __tablename__ = 'back_order'

    id = Column(Integer, primary_key=True)
    parts_line_id = Column(Integer, ForeignKey('parts_line.id', ondelete='SET NULL'))
    work_order_id = Column(Integer, ForeignKey('work_order.id'), nullable=False)
    product_id = Column(Integer, ForeignKey('product.id'))
    product_name = Column(String(200))
    sku = Column(String(64))

    # Set to parts_line_id while the back-order is open, cleared when terminal.
    # The unique constraint allows one open back-order per parts line.
    open_parts_line_id = Column(Integer, unique=True)

    quantity_needed = Column(Integer, nullable=False)
    quantity_ordered = Column(Integer)
    quantity_received = Column(Integer, nullable=False, default=0)

    status = Column(Enum(BackOrderStatus), nullable=False, default=BackOrderStatus.PENDING)
    priority = Column(Enum(BackOrderPriority), nullable=False, default=BackOrderPriority.NORMAL)

    # Supplier order details
    supplier = Column(String(100))
    order_date = Column(Date)
    expected_date = Column(Date)
    received_date = Column(Date)
    order_reference = Column(String(100))
    unit_cost = Column(Float)
    total_cost = Column(Float)

    work_order_scheduled = Column(DateTime)
    notes = Column(Text)
    cancel_reason = Column(Text)
    created_by = Column(String(100))
    updated_by = Column(String(100))
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    version = Column(Integer, nullable=False)

    parts_line = relationship("PartsLine", back_populates="back_orders")
    work_order = relationship("WorkOrder", back_populates="back_orders")
    product = relationship("Product")

    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        Index('idx_back_order_status', 'status'),
        Index('idx_back_order_product', 'product_id'),
    )

    @property
    def is_open(self):
        return not self.status.is_terminal

    @property
    def quantity_outstanding(self):
        target = self.quantity_ordered or self.quantity_needed
        return max(0, target - (self.quantity_received or 0))

class WorkOrderStatusHistory(Base):
    __tablename__ = 'work_order_status_history'

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey('work_order.id'), nullable=False)
    from_status = Column(WORK_ORDER_STATUS_TYPE, nullable=False)
    requested_status = Column(WORK_ORDER_STATUS_TYPE, nullable=False)
    final_status = Column(WORK_ORDER_STATUS_TYPE, nullable=False)
    redirected = Column(Boolean, default=False)
    override_used = Column(Boolean, default=False)
    reason = Column(Text)
    actor = Column(String(100))
    created_at = Column(DateTime, default=func.now())

    work_order = relationship("WorkOrder", back_populates="status_history")

class PlanningRiskEvent(Base):
    """Raised whenever a job is scheduled while its parts are not complete."""
    __tablename__ = 'planning_risk_event'

    id = Column(Integer, primary_key=True)
    work_order_id = Column(Integer, ForeignKey('work_order.id'), nullable=False)
    parts_summary_status = Column(Enum(PartsSummaryStatus), nullable=False)
    reason = Column(String(100), default='planned-with-incomplete-parts')
    override_reason = Column(Text)
    actor = Column(String(100))
    created_at = Column(DateTime, default=func.now())

    work_order = relationship("WorkOrder", back_populates="planning_risk_events")
