"""Work order status state machine.

Derives the status a work order actually ends up in from the status that was
requested and the readiness of its parts.
"""
from dataclasses import dataclass
from typing import Optional

from workshop_fulfillment.core.parts_summary import is_complete, is_worse_than
from workshop_fulfillment.exceptions import OverrideRequired
from workshop_fulfillment.models import PartsSummaryStatus, WorkOrderStatus
from workshop_fulfillment.results import Result


@dataclass(frozen=True)
class TransitionOutcome:
    final_status: WorkOrderStatus
    override_used: bool
    planning_risk: bool
    requested_status: Optional[WorkOrderStatus] = None

    @property
    def redirected(self) -> bool:
        return self.requested_status is not None and self.final_status is not self.requested_status


def _clean_reason(override_reason: Optional[str]) -> Optional[str]:
    if override_reason is None:
        return None
    reason = str(override_reason).strip()
    return reason or None


def resolve_transition(
    current_status,
    requested_status,
    parts_summary_status,
    override_reason: Optional[str] = None,
    is_privileged: bool = False,
    complete_statuses=None
) -> Result:
    """Resolve a requested work order status change.

    Args:
        current_status: Current WorkOrderStatus (member or code)
        requested_status: Requested WorkOrderStatus (member or code)
        parts_summary_status: Current PartsSummaryStatus (member or code)
        override_reason: Human supplied reason for scheduling unready parts
        is_privileged: Whether the actor holds management privilege
        complete_statuses: Summary statuses that count as complete for
            planning risk; defaults to DEFAULT_COMPLETE_STATUSES

    Returns:
        Result carrying a TransitionOutcome, or OverrideRequired

    Raises:
        UnknownStatus if any status code is outside its closed set
    """
    # Every code is validated before any rule runs
    WorkOrderStatus.from_code(current_status)
    target = WorkOrderStatus.from_code(requested_status)
    parts = PartsSummaryStatus.from_code(parts_summary_status)
    reason = _clean_reason(override_reason)

    # Only a privileged scheduling of unready parts needs, and uses, an override
    override_gate = (
        target is WorkOrderStatus.SCHEDULED
        and is_privileged
        and is_worse_than(parts, PartsSummaryStatus.IN_TRANSIT)
    )
    if override_gate and reason is None:
        return Result.failure(OverrideRequired(
            f"Parts status is {parts.value}; scheduling this work order requires an override reason",
            code='OVERRIDE_REQUIRED',
            details={'parts_summary_status': parts.value, 'requested_status': target.value}
        ))

    if target is WorkOrderStatus.IN_PROGRESS and parts is not PartsSummaryStatus.FULLY_ISSUED:
        # Hard gate: no override can start a job whose parts are not issued
        return Result.success(TransitionOutcome(
            final_status=WorkOrderStatus.WAITING_ON_PARTS,
            override_used=False,
            planning_risk=False,
            requested_status=target
        ))

    planning_risk = target is WorkOrderStatus.SCHEDULED and not is_complete(parts, complete_statuses)
    return Result.success(TransitionOutcome(
        final_status=target,
        override_used=override_gate,
        planning_risk=planning_risk,
        requested_status=target
    ))
