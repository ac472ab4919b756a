from .parts_summary import aggregate, severity, is_complete, DEFAULT_COMPLETE_STATUSES
from .status_resolver import resolve_transition, TransitionOutcome
from .execution_status import project_execution_status, ExecutionRule, DEFAULT_RULES, load_rules

__all__ = [
    'aggregate',
    'severity',
    'is_complete',
    'DEFAULT_COMPLETE_STATUSES',
    'resolve_transition',
    'TransitionOutcome',
    'project_execution_status',
    'ExecutionRule',
    'DEFAULT_RULES',
    'load_rules'
]
