"""Transition Engine - Workflow matching, validation, assignment, history and actions"""
from .engine import TransitionEngine
from .catalog import WorkflowCatalog
from .matcher import WorkflowMatcher
from .transition_validator import TransitionValidator
from .assignment_resolver import AssignmentResolver
from .history_recorder import HistoryRecorder
from .action_executor import ActionExecutor, ActionOutboxProcessor

__all__ = [
    "TransitionEngine",
    "WorkflowCatalog",
    "WorkflowMatcher",
    "TransitionValidator",
    "AssignmentResolver",
    "HistoryRecorder",
    "ActionExecutor",
    "ActionOutboxProcessor",
]
