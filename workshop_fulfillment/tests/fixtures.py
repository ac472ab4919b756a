"""
Shared database fixtures for service tests.
"""
import unittest
from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from workshop_fulfillment.models import (
    Base, InventoryRecord, PartsLine, PartsLineStatus, Product, WorkOrder, WorkOrderStatus
)


def sqlite_engine(url='sqlite://', timeout=30):
    """In-memory engine shared by all sessions of a test, or a file engine for concurrency tests."""
    if url == 'sqlite://':
        return create_engine(url, connect_args={'check_same_thread': False}, poolclass=StaticPool)
    return create_engine(url, connect_args={'check_same_thread': False, 'timeout': timeout})


class DatabaseTestCase(unittest.TestCase):
    """TestCase with a fresh schema and a session per test."""

    database_url = 'sqlite://'

    def setUp(self):
        self.engine = sqlite_engine(self.database_url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, autoflush=False)
        self.session = self.Session()

    def tearDown(self):
        self.session.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def add_product(self, sku, on_hand=0, reserved=0, manage_stock=True, unit_cost=12.5, name=None):
        product = Product(sku=sku, name=name or f"Part {sku}", unit_cost=unit_cost)
        product.inventory = InventoryRecord(
            sku=sku,
            quantity_on_hand=on_hand,
            quantity_reserved=reserved,
            manage_stock=manage_stock
        )
        self.session.add(product)
        self.session.commit()
        return product

    def add_work_order(self, number='1001', status=WorkOrderStatus.APPROVED, scheduled_in_days=10):
        scheduled_at = None
        if scheduled_in_days is not None:
            scheduled_at = datetime.now() + timedelta(days=scheduled_in_days)

        work_order = WorkOrder(
            work_order_number=number,
            customer_name='Garage De Vries',
            vehicle_plate='12-ABC-3',
            scheduled_at=scheduled_at,
            work_order_status=status
        )
        self.session.add(work_order)
        self.session.commit()
        return work_order

    def add_line(self, work_order, product=None, quantity=1, status=PartsLineStatus.UNKNOWN,
                 reserved=0, product_name=None):
        line = PartsLine(
            work_order=work_order,
            product=product,
            product_name=product_name or (product.name if product else 'Free text part'),
            quantity=quantity,
            quantity_reserved=reserved,
            status=status
        )
        self.session.add(line)
        self.session.commit()
        return line

    def inventory_of(self, sku):
        record = self.session.query(InventoryRecord).filter(InventoryRecord.sku == sku).one()
        self.session.refresh(record)
        return record.quantity_on_hand, record.quantity_reserved
