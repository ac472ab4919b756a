"""Aggregate readiness of all parts lines attached to one work order.

The summary is always derived from the current line statuses. Anything stored
on the work order is a cache of this function's output and is rebuilt on every
parts line write.
"""
from typing import Iterable, List, Optional, Sequence, Union

from workshop_fulfillment.models import PartsLine, PartsLineStatus, PartsSummaryStatus

LineInput = Union[PartsLine, PartsLineStatus, str]

STAGED_STATUSES = frozenset({PartsLineStatus.STAGED, PartsLineStatus.ISSUED})
IN_TRANSIT_STATUSES = frozenset({PartsLineStatus.ORDERED, PartsLineStatus.PARTIALLY_RECEIVED})
AVAILABLE_STATUSES = frozenset({
    PartsLineStatus.IN_STOCK,
    PartsLineStatus.RESERVED,
    PartsLineStatus.RECEIVED
})

# Lowest = needs most attention. NO_PARTS_NEEDED ranks with the ready end.
SEVERITY_ORDER = (
    PartsSummaryStatus.UNKNOWN,
    PartsSummaryStatus.NEEDS_CHECK,
    PartsSummaryStatus.INCOMPLETE,
    PartsSummaryStatus.IN_TRANSIT,
    PartsSummaryStatus.READY_TO_STAGE,
    PartsSummaryStatus.FULLY_STAGED,
    PartsSummaryStatus.FULLY_ISSUED,
    PartsSummaryStatus.NO_PARTS_NEEDED,
)
_SEVERITY = {status: rank for rank, status in enumerate(SEVERITY_ORDER)}

DEFAULT_COMPLETE_STATUSES = frozenset({
    PartsSummaryStatus.NO_PARTS_NEEDED,
    PartsSummaryStatus.READY_TO_STAGE,
    PartsSummaryStatus.FULLY_STAGED,
    PartsSummaryStatus.FULLY_ISSUED
})


def _line_status(line: LineInput) -> PartsLineStatus:
    if isinstance(line, PartsLine):
        return PartsLineStatus.from_code(line.status)
    return PartsLineStatus.from_code(line)


def aggregate(lines: Optional[Iterable[LineInput]]) -> PartsSummaryStatus:
    """Compute the parts summary status of a work order.

    Rules are checked top to bottom and the first match wins:

    1. no lines                              -> NO_PARTS_NEEDED
    2. every line UNKNOWN                    -> UNKNOWN
    3. any line UNKNOWN                      -> NEEDS_CHECK
    4. every line ISSUED                     -> FULLY_ISSUED
    5. every line STAGED or ISSUED           -> FULLY_STAGED
    6. any line ORDERED or PARTIALLY_RECEIVED -> IN_TRANSIT
    7. every line IN_STOCK/RESERVED/RECEIVED -> READY_TO_STAGE
    8. anything else                         -> INCOMPLETE

    An unresolved line blocks a clean aggregate even when every other line is
    satisfied, while ORDERED and PARTIALLY_RECEIVED share one bucket.

    Args:
        lines: PartsLine rows, PartsLineStatus members or status codes

    Returns:
        PartsSummaryStatus

    Raises:
        UnknownStatus if a line carries a code outside PartsLineStatus
    """
    statuses = [_line_status(line) for line in (lines or [])]

    if not statuses:
        return PartsSummaryStatus.NO_PARTS_NEEDED

    if all(s is PartsLineStatus.UNKNOWN for s in statuses):
        return PartsSummaryStatus.UNKNOWN

    if any(s is PartsLineStatus.UNKNOWN for s in statuses):
        return PartsSummaryStatus.NEEDS_CHECK

    if all(s is PartsLineStatus.ISSUED for s in statuses):
        return PartsSummaryStatus.FULLY_ISSUED

    if all(s in STAGED_STATUSES for s in statuses):
        return PartsSummaryStatus.FULLY_STAGED

    if any(s in IN_TRANSIT_STATUSES for s in statuses):
        return PartsSummaryStatus.IN_TRANSIT

    if all(s in AVAILABLE_STATUSES for s in statuses):
        return PartsSummaryStatus.READY_TO_STAGE

    return PartsSummaryStatus.INCOMPLETE


def severity(status) -> int:
    """Rank of a summary status; lower means further from ready."""
    return _SEVERITY[PartsSummaryStatus.from_code(status)]


def is_worse_than(status, reference) -> bool:
    return severity(status) < severity(reference)


def parse_complete_statuses(codes: Optional[Sequence]) -> frozenset:
    """Turn configured codes into a set of summary statuses."""
    if codes is None:
        return DEFAULT_COMPLETE_STATUSES
    return frozenset(PartsSummaryStatus.from_code(code) for code in codes)


def is_complete(status, complete_statuses=None) -> bool:
    complete = DEFAULT_COMPLETE_STATUSES if complete_statuses is None else complete_statuses
    return PartsSummaryStatus.from_code(status) in complete


def count_by_status(lines: Iterable[LineInput]) -> dict:
    """Number of lines per status code, for dashboards and logs."""
    counts = {}
    for line in lines:
        code = _line_status(line).value
        counts[code] = counts.get(code, 0) + 1
    return counts


def missing_lines(lines: List[PartsLine]) -> List[PartsLine]:
    """Lines that keep the work order from being ready to stage."""
    return [
        line for line in lines
        if _line_status(line) not in AVAILABLE_STATUSES | STAGED_STATUSES
    ]
