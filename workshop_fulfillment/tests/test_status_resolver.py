"""
Tests for the work order status resolver.
"""
import unittest

from workshop_fulfillment.core.parts_summary import parse_complete_statuses
from workshop_fulfillment.core.status_resolver import TransitionOutcome, resolve_transition
from workshop_fulfillment.exceptions import OverrideRequired, UnknownStatus
from workshop_fulfillment.models import PartsSummaryStatus as P, WorkOrderStatus as W


class TestInProgressGate(unittest.TestCase):

    def test_unissued_parts_redirect_to_waiting(self):
        for parts in P:
            if parts is P.FULLY_ISSUED:
                continue
            with self.subTest(parts=parts):
                outcome = resolve_transition(W.SCHEDULED, W.IN_PROGRESS, parts).unwrap()
                self.assertEqual(outcome.final_status, W.WAITING_ON_PARTS)
                self.assertFalse(outcome.override_used)
                self.assertFalse(outcome.planning_risk)
                self.assertTrue(outcome.redirected)

    def test_override_cannot_bypass_gate(self):
        result = resolve_transition(
            W.SCHEDULED, W.IN_PROGRESS, P.FULLY_STAGED,
            override_reason='Customer is waiting', is_privileged=True
        )
        self.assertTrue(result.ok)
        self.assertEqual(result.value.final_status, W.WAITING_ON_PARTS)
        self.assertFalse(result.value.override_used)

    def test_fully_issued_starts(self):
        outcome = resolve_transition(W.SCHEDULED, W.IN_PROGRESS, P.FULLY_ISSUED).unwrap()
        self.assertEqual(outcome, TransitionOutcome(W.IN_PROGRESS, False, False, W.IN_PROGRESS))
        self.assertFalse(outcome.redirected)


class TestSchedulingOverride(unittest.TestCase):

    def test_privileged_without_reason_needs_override(self):
        for reason in (None, '', '   '):
            with self.subTest(reason=reason):
                result = resolve_transition(
                    W.APPROVED, W.SCHEDULED, P.NEEDS_CHECK, override_reason=reason, is_privileged=True
                )
                self.assertFalse(result.ok)
                self.assertIsInstance(result.error, OverrideRequired)
                self.assertEqual(result.error.code, 'OVERRIDE_REQUIRED')
                self.assertIn('NEEDS_CHECK', result.error.message)

    def test_privileged_with_reason_schedules_with_risk(self):
        outcome = resolve_transition(
            W.APPROVED, W.SCHEDULED, P.INCOMPLETE,
            override_reason='Parts promised by noon', is_privileged=True
        ).unwrap()
        self.assertEqual(outcome.final_status, W.SCHEDULED)
        self.assertTrue(outcome.override_used)
        self.assertTrue(outcome.planning_risk)

    def test_reason_without_gate_is_not_an_override(self):
        cases = (
            (W.SCHEDULED, P.READY_TO_STAGE, True),
            (W.SCHEDULED, P.INCOMPLETE, False),
            (W.DONE, P.UNKNOWN, True),
        )
        for target, parts, privileged in cases:
            with self.subTest(target=target, parts=parts):
                outcome = resolve_transition(
                    W.APPROVED, target, parts, override_reason='Customer asked', is_privileged=privileged
                ).unwrap()
                self.assertEqual(outcome.final_status, target)
                self.assertFalse(outcome.override_used)

    def test_in_transit_needs_no_override_but_is_a_risk(self):
        outcome = resolve_transition(W.APPROVED, W.SCHEDULED, P.IN_TRANSIT, is_privileged=True).unwrap()
        self.assertEqual(outcome.final_status, W.SCHEDULED)
        self.assertFalse(outcome.override_used)
        self.assertTrue(outcome.planning_risk)

    def test_non_privileged_is_allowed(self):
        outcome = resolve_transition(W.APPROVED, W.SCHEDULED, P.UNKNOWN).unwrap()
        self.assertEqual(outcome.final_status, W.SCHEDULED)
        self.assertFalse(outcome.override_used)
        self.assertTrue(outcome.planning_risk)

    def test_complete_parts_carry_no_risk(self):
        for parts in (P.NO_PARTS_NEEDED, P.READY_TO_STAGE, P.FULLY_STAGED, P.FULLY_ISSUED):
            with self.subTest(parts=parts):
                outcome = resolve_transition(W.APPROVED, W.SCHEDULED, parts, is_privileged=True).unwrap()
                self.assertFalse(outcome.planning_risk)

    def test_complete_set_is_configurable(self):
        strict = parse_complete_statuses(['FULLY_ISSUED'])
        outcome = resolve_transition(
            W.APPROVED, W.SCHEDULED, P.READY_TO_STAGE, complete_statuses=strict
        ).unwrap()
        self.assertTrue(outcome.planning_risk)


class TestOtherTargets(unittest.TestCase):

    def test_pass_through(self):
        for target in (W.APPROVED, W.DONE, W.CANCELLED, W.WAITING_ON_PARTS):
            with self.subTest(target=target):
                outcome = resolve_transition(W.SCHEDULED, target, P.INCOMPLETE).unwrap()
                self.assertEqual(outcome.final_status, target)
                self.assertFalse(outcome.planning_risk)

    def test_accepts_workshop_codes_and_names(self):
        outcome = resolve_transition('GOEDGEKEURD', 'GEPLAND', 'FULLY_STAGED').unwrap()
        self.assertEqual(outcome.final_status, W.SCHEDULED)

        outcome = resolve_transition('approved', 'in_progress', 'fully_issued').unwrap()
        self.assertEqual(outcome.final_status, W.IN_PROGRESS)

    def test_unknown_codes_raise_before_any_rule(self):
        with self.assertRaises(UnknownStatus):
            resolve_transition('BOGUS', W.SCHEDULED, P.FULLY_ISSUED)
        with self.assertRaises(UnknownStatus):
            resolve_transition(W.APPROVED, 'OPGEHAALD', P.FULLY_ISSUED)
        with self.assertRaises(UnknownStatus) as context:
            resolve_transition(W.APPROVED, W.IN_PROGRESS, 'HALF_DONE')
        self.assertEqual(context.exception.details['dimension'], 'PartsSummaryStatus')

    def test_unwrap_raises_carried_error(self):
        result = resolve_transition(W.APPROVED, W.SCHEDULED, P.UNKNOWN, is_privileged=True)
        with self.assertRaises(OverrideRequired):
            result.unwrap()
        self.assertEqual(result.to_dict()['error'], 'OverrideRequired')


if __name__ == '__main__':
    unittest.main()
