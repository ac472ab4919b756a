"""Dashboard label derived from work order status and parts readiness."""
import json
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional, Sequence

from workshop_fulfillment.exceptions import ConfigError
from workshop_fulfillment.models import PartsSummaryStatus, WorkOrderStatus


@dataclass(frozen=True)
class ExecutionRule:
    """One row of the rule table. An empty predicate matches any status."""
    execution_status: str
    work_order_statuses: Optional[FrozenSet[WorkOrderStatus]] = None
    parts_summary_statuses: Optional[FrozenSet[PartsSummaryStatus]] = None

    def matches(self, work_order_status: WorkOrderStatus, parts_summary_status: PartsSummaryStatus) -> bool:
        if self.work_order_statuses and work_order_status not in self.work_order_statuses:
            return False
        if self.parts_summary_statuses and parts_summary_status not in self.parts_summary_statuses:
            return False
        return True


def _as_set(enum_cls, predicate):
    if predicate is None:
        return None
    if isinstance(predicate, (str, enum_cls)):
        predicate = [predicate]
    return frozenset(enum_cls.from_code(code) for code in predicate)


def rule(execution_status: str, work_order=None, parts=None) -> ExecutionRule:
    """Build a rule from a status, a collection of statuses or None per side."""
    return ExecutionRule(
        execution_status=execution_status,
        work_order_statuses=_as_set(WorkOrderStatus, work_order),
        parts_summary_statuses=_as_set(PartsSummaryStatus, parts)
    )


DEFAULT_RULES = (
    rule('COMPLETED', work_order=WorkOrderStatus.DONE),
    rule('CANCELLED', work_order=WorkOrderStatus.CANCELLED),
    rule('WAITING_ON_PARTS', work_order=WorkOrderStatus.WAITING_ON_PARTS),
    rule('IN_PROGRESS', work_order=WorkOrderStatus.IN_PROGRESS),
    rule('READY_TO_START', work_order=WorkOrderStatus.SCHEDULED, parts=[
        PartsSummaryStatus.FULLY_ISSUED,
        PartsSummaryStatus.FULLY_STAGED,
        PartsSummaryStatus.NO_PARTS_NEEDED
    ]),
    rule('AWAITING_STAGING', work_order=WorkOrderStatus.SCHEDULED,
         parts=PartsSummaryStatus.READY_TO_STAGE),
    rule('PARTS_IN_TRANSIT', work_order=WorkOrderStatus.SCHEDULED,
         parts=PartsSummaryStatus.IN_TRANSIT),
    rule('PARTS_ATTENTION', work_order=WorkOrderStatus.SCHEDULED, parts=[
        PartsSummaryStatus.UNKNOWN,
        PartsSummaryStatus.NEEDS_CHECK,
        PartsSummaryStatus.INCOMPLETE
    ]),
)


def project_execution_status(
    work_order_status,
    parts_summary_status,
    rules: Optional[Sequence[ExecutionRule]] = None
) -> Optional[str]:
    """Return the label of the first matching rule, or None.

    Callers fall back to showing the raw work order status on None.
    """
    wo_status = WorkOrderStatus.from_code(work_order_status)
    parts_status = PartsSummaryStatus.from_code(parts_summary_status)

    for candidate in (DEFAULT_RULES if rules is None else rules):
        if candidate.matches(wo_status, parts_status):
            return candidate.execution_status
    return None


def parse_rules(raw_rules: Iterable[dict]) -> List[ExecutionRule]:
    """Parse rule dictionaries of the form

        {"when": {"workOrderStatus": "GEPLAND", "partsSummaryStatus": ["IN_TRANSIT"]},
         "executionStatus": "PARTS_IN_TRANSIT"}

    Rules without an execution status are skipped. Unknown codes raise
    UnknownStatus.
    """
    rules = []
    for raw in raw_rules:
        label = str(raw.get('executionStatus') or '').strip()
        if not label:
            continue
        when = raw.get('when') or {}
        rules.append(rule(
            label,
            work_order=when.get('workOrderStatus') or None,
            parts=when.get('partsSummaryStatus') or None
        ))
    return rules


def load_rules(path: Optional[Path] = None) -> Sequence[ExecutionRule]:
    """Load a rule table from a JSON file, falling back to DEFAULT_RULES."""
    if path is None:
        return DEFAULT_RULES

    try:
        with open(path) as handle:
            data = json.load(handle)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read execution status rules from {path}: {str(e)}")

    raw_rules = data.get('rules', []) if isinstance(data, dict) else data
    return tuple(parse_rules(raw_rules))
