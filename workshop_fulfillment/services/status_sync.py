from typing import Optional, Sequence

from workshop_fulfillment.core.parts_summary import aggregate, is_complete
from workshop_fulfillment.core.execution_status import ExecutionRule, project_execution_status
from workshop_fulfillment.models import PartsSummaryStatus, WorkOrder, WorkOrderStatus


def sync_work_order_status(
    work_order: WorkOrder,
    execution_rules: Optional[Sequence[ExecutionRule]] = None,
    complete_statuses=None
) -> PartsSummaryStatus:
    """Rebuild the cached parts summary, execution label and planning risk flag.

    Call after any parts line change. The result depends only on the current
    parts lines, so running it twice is harmless. Does not commit.
    """
    summary = aggregate(work_order.parts_lines)

    work_order.parts_summary_status = summary
    work_order.execution_status = project_execution_status(
        work_order.work_order_status, summary, execution_rules
    )
    work_order.planning_risk_active = (
        work_order.work_order_status is WorkOrderStatus.SCHEDULED
        and not is_complete(summary, complete_statuses)
    )
    return summary
