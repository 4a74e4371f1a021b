"""Service modules - Business logic layer"""
from .workflow_service import WorkflowService
from .workflow_transfer_service import WorkflowTransferService
from .case_service import CaseService

__all__ = [
    "WorkflowService",
    "WorkflowTransferService",
    "CaseService",
]
