"""
Tests for the work order service.
"""
import unittest
from unittest.mock import MagicMock

from workshop_fulfillment.core.execution_status import DEFAULT_RULES
from workshop_fulfillment.core.parts_summary import DEFAULT_COMPLETE_STATUSES
from workshop_fulfillment.exceptions import (
    InvalidTransition, NotFoundError, OverrideRequired, UnknownStatus, ValidationError
)
from workshop_fulfillment.models import (
    BackOrder, BackOrderStatus, PartsLine, PartsLineStatus, PartsSummaryStatus, PlanningRiskEvent,
    WorkOrderStatus, WorkOrderStatusHistory
)
from workshop_fulfillment.services.back_order_service import BackOrderService
from workshop_fulfillment.services.inventory_service import InventoryService
from workshop_fulfillment.services.supplier_client import SupplierClient
from workshop_fulfillment.services.work_order_service import WorkOrderService
from workshop_fulfillment.tests.fixtures import DatabaseTestCase


class WorkOrderTestCase(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.inventory = InventoryService(self.session)
        self.back_orders = BackOrderService(
            self.session, inventory_service=self.inventory, supplier_client=MagicMock(spec=SupplierClient)
        )
        self.service = WorkOrderService(
            self.session,
            inventory_service=self.inventory,
            back_order_service=self.back_orders,
            execution_rules=DEFAULT_RULES,
            complete_statuses=DEFAULT_COMPLETE_STATUSES
        )
        self.work_order = self.add_work_order('2001')
        self.pads = self.add_product('PAD-1', on_hand=10)
        self.filter = self.add_product('FLT-9', on_hand=2)

    def add(self, product=None, quantity=1, **kwargs):
        result = self.service.add_parts_line(
            self.work_order.id, quantity=quantity, product_id=product.id if product else None, **kwargs
        )
        self.assertTrue(result.ok, result.error)
        return result.value

    def open_back_orders(self, line):
        return self.session.query(BackOrder).filter(
            BackOrder.parts_line_id == line.id, BackOrder.status == BackOrderStatus.PENDING
        ).all()


class TestPartsLines(WorkOrderTestCase):

    def test_add_line_reserves_stock(self):
        line = self.add(self.pads, quantity=4)

        self.assertEqual(line.status, PartsLineStatus.RESERVED)
        self.assertEqual(line.quantity_reserved, 4)
        self.assertEqual(self.inventory_of('PAD-1'), (10, 4))
        self.assertEqual(self.work_order.parts_summary_status, PartsSummaryStatus.READY_TO_STAGE)

    def test_shortfall_opens_back_order(self):
        line = self.add(self.filter, quantity=5)

        self.assertEqual(line.status, PartsLineStatus.UNKNOWN)
        self.assertEqual(line.quantity_reserved, 2)
        self.assertEqual(self.inventory_of('FLT-9'), (2, 2))

        back_orders = self.open_back_orders(line)
        self.assertEqual(len(back_orders), 1)
        self.assertEqual(back_orders[0].quantity_needed, 3)
        self.assertEqual(self.work_order.parts_summary_status, PartsSummaryStatus.UNKNOWN)

    def test_free_text_and_service_lines(self):
        labour = self.add_product('LAB-APK', manage_stock=False)

        free_text = self.add(product_name='Wiper blade, customer supplied')
        service_item = self.add(labour, quantity=2)

        self.assertEqual(free_text.status, PartsLineStatus.UNKNOWN)
        self.assertEqual(service_item.status, PartsLineStatus.IN_STOCK)
        self.assertEqual(self.open_back_orders(free_text), [])
        self.assertEqual(self.work_order.parts_summary_status, PartsSummaryStatus.NEEDS_CHECK)

    def test_add_line_validation(self):
        with self.assertRaises(ValidationError):
            self.service.add_parts_line(self.work_order.id, quantity=0, product_id=self.pads.id)
        with self.assertRaises(ValidationError):
            self.service.add_parts_line(self.work_order.id, quantity=1)
        with self.assertRaises(NotFoundError):
            self.service.add_parts_line(self.work_order.id, quantity=1, product_id=999)

    def test_add_line_to_closed_work_order(self):
        closed = self.add_work_order('2002', status=WorkOrderStatus.DONE)

        result = self.service.add_parts_line(closed.id, quantity=1, product_id=self.pads.id)

        self.assertIsInstance(result.error, InvalidTransition)
        self.assertEqual(self.inventory_of('PAD-1'), (10, 0))

    def test_update_quantity_moves_reservation(self):
        line = self.add(self.pads, quantity=4)

        self.assertTrue(self.service.update_parts_line_quantity(line.id, 6).ok)
        self.assertEqual(line.quantity_reserved, 6)
        self.assertEqual(self.inventory_of('PAD-1'), (10, 6))

        self.assertTrue(self.service.update_parts_line_quantity(line.id, 1).ok)
        self.assertEqual(line.quantity, 1)
        self.assertEqual(line.quantity_reserved, 1)
        self.assertEqual(self.inventory_of('PAD-1'), (10, 1))

    def test_update_quantity_beyond_stock_back_orders_shortfall(self):
        line = self.add(self.pads, quantity=8)

        result = self.service.update_parts_line_quantity(line.id, 12)

        self.assertTrue(result.ok)
        self.assertEqual(line.quantity_reserved, 8)
        self.assertEqual(line.status, PartsLineStatus.UNKNOWN)
        self.assertEqual(self.open_back_orders(line)[0].quantity_needed, 4)

    def test_update_quantity_with_open_back_order(self):
        line = self.add(self.filter, quantity=5)

        result = self.service.update_parts_line_quantity(line.id, 7)

        self.assertIsInstance(result.error, InvalidTransition)
        self.assertEqual(line.quantity, 5)

    def test_issue_consumes_reservation(self):
        line = self.add(self.pads, quantity=4)

        result = self.service.set_parts_line_status(line.id, 'ISSUED', actor='warehouse')

        self.assertTrue(result.ok)
        self.assertEqual(line.quantity_reserved, 0)
        self.assertEqual(self.inventory_of('PAD-1'), (6, 0))
        self.assertEqual(self.work_order.parts_summary_status, PartsSummaryStatus.FULLY_ISSUED)

    def test_set_status_rejects_unknown_code(self):
        line = self.add(self.pads, quantity=1)

        with self.assertRaises(UnknownStatus):
            self.service.set_parts_line_status(line.id, 'MISPLACED')

    def test_remove_line_releases_reservation(self):
        line = self.add(self.pads, quantity=3)
        other = self.add(self.pads, quantity=1)
        line_id = line.id

        result = self.service.remove_parts_line(line_id, actor='planner')

        self.assertTrue(result.ok)
        self.assertIsNone(self.session.get(PartsLine, line_id))
        self.assertEqual(self.inventory_of('PAD-1'), (10, 1))
        self.assertEqual([l.id for l in self.work_order.parts_lines], [other.id])

    def test_remove_line_with_open_back_order(self):
        line = self.add(self.filter, quantity=5)

        result = self.service.remove_parts_line(line.id)

        self.assertIsInstance(result.error, InvalidTransition)
        self.assertIsNotNone(self.session.get(PartsLine, line.id))

    def test_removing_last_line_means_no_parts_needed(self):
        line = self.add(self.pads, quantity=1)

        self.service.remove_parts_line(line.id)

        self.assertEqual(self.work_order.parts_summary_status, PartsSummaryStatus.NO_PARTS_NEEDED)


class TestStatusChanges(WorkOrderTestCase):

    def history(self):
        return self.session.query(WorkOrderStatusHistory).filter(
            WorkOrderStatusHistory.work_order_id == self.work_order.id
        ).order_by(WorkOrderStatusHistory.id).all()

    def test_start_without_issued_parts_waits(self):
        self.add(self.pads, quantity=2)

        outcome = self.service.change_status(self.work_order.id, 'IN_UITVOERING', actor='mechanic').unwrap()

        self.assertEqual(outcome.final_status, WorkOrderStatus.WAITING_ON_PARTS)
        self.assertEqual(self.work_order.work_order_status, WorkOrderStatus.WAITING_ON_PARTS)
        self.assertEqual(self.work_order.execution_status, 'WAITING_ON_PARTS')

        entry = self.history()[-1]
        self.assertTrue(entry.redirected)
        self.assertEqual(entry.requested_status, WorkOrderStatus.IN_PROGRESS)
        self.assertEqual(entry.final_status, WorkOrderStatus.WAITING_ON_PARTS)

    def test_start_after_issue(self):
        line = self.add(self.pads, quantity=2)
        self.service.set_parts_line_status(line.id, PartsLineStatus.ISSUED)

        outcome = self.service.change_status(self.work_order.id, WorkOrderStatus.IN_PROGRESS).unwrap()

        self.assertEqual(outcome.final_status, WorkOrderStatus.IN_PROGRESS)
        self.assertEqual(self.service.get_execution_status(self.work_order.id), 'IN_PROGRESS')

    def test_privileged_scheduling_needs_override(self):
        self.add(product_name='Unidentified sensor')

        result = self.service.change_status(self.work_order.id, 'GEPLAND', is_privileged=True, actor='manager')

        self.assertIsInstance(result.error, OverrideRequired)
        self.assertEqual(self.work_order.work_order_status, WorkOrderStatus.APPROVED)
        self.assertEqual(self.history(), [])

    def test_override_records_planning_risk(self):
        self.add(product_name='Unidentified sensor')

        result = self.service.change_status(
            self.work_order.id, 'GEPLAND', override_reason='Sensor arrives tomorrow',
            is_privileged=True, actor='manager'
        )

        self.assertTrue(result.value.override_used)
        self.assertEqual(self.work_order.work_order_status, WorkOrderStatus.SCHEDULED)
        self.assertTrue(self.work_order.planning_risk_active)
        self.assertEqual(self.work_order.execution_status, 'PARTS_ATTENTION')

        events = self.session.query(PlanningRiskEvent).all()
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].parts_summary_status, PartsSummaryStatus.UNKNOWN)
        self.assertEqual(events[0].override_reason, 'Sensor arrives tomorrow')
        self.assertTrue(self.history()[-1].override_used)

    def test_scheduling_ready_parts_has_no_risk(self):
        self.add(self.pads, quantity=1)

        self.service.change_status(self.work_order.id, WorkOrderStatus.SCHEDULED, is_privileged=True)

        self.assertFalse(self.work_order.planning_risk_active)
        self.assertEqual(self.work_order.execution_status, 'AWAITING_STAGING')
        self.assertEqual(self.session.query(PlanningRiskEvent).count(), 0)

    def test_reason_on_ready_parts_is_not_logged_as_override(self):
        self.add(self.pads, quantity=1)

        outcome = self.service.change_status(
            self.work_order.id, WorkOrderStatus.SCHEDULED, override_reason='Customer asked',
            is_privileged=True, actor='manager'
        ).unwrap()

        self.assertFalse(outcome.override_used)
        entry = self.history()[-1]
        self.assertFalse(entry.override_used)
        self.assertEqual(entry.reason, 'Customer asked')

    def test_unknown_status_raises(self):
        with self.assertRaises(UnknownStatus):
            self.service.change_status(self.work_order.id, 'OPGEHAALD')

    def test_recompute_repairs_stale_summary(self):
        line = self.add(self.pads, quantity=1)
        self.work_order.parts_summary_status = PartsSummaryStatus.FULLY_ISSUED
        self.session.commit()

        summary = self.service.recompute_parts_summary(self.work_order.id)

        self.assertEqual(summary, PartsSummaryStatus.READY_TO_STAGE)
        self.assertEqual(self.work_order.parts_summary_status, PartsSummaryStatus.READY_TO_STAGE)

        report = self.service.get_parts_summary(self.work_order.id)
        self.assertEqual(report['line_counts'], {'RESERVED': 1})
        self.assertTrue(report['is_complete'])
        self.assertEqual(report['missing_line_ids'], [])
        self.assertEqual(line.status, PartsLineStatus.RESERVED)

    def test_missing_work_order(self):
        with self.assertRaises(NotFoundError):
            self.service.recompute_parts_summary(404)


if __name__ == '__main__':
    unittest.main()
