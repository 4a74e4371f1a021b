"""Workflow Repository - Data access for workflows, states and transitions"""
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection, to_document, from_document, to_plain
from ..domain.models import Workflow, WorkflowState, WorkflowTransition
from ..domain.enums import MatchRecordType
from ..domain.errors import (
    WorkflowNotFoundError, StateNotFoundError, TransitionNotFoundError, AlreadyExistsError
)
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)

# Embedded lists are stored in their own collections
_WORKFLOW_EXCLUDE = ("states", "transitions")


class WorkflowRepository:
    """Repository for workflow definition operations"""

    def __init__(self):
        self._workflows: Collection = get_collection("workflows")
        self._states: Collection = get_collection("workflow_states")
        self._transitions: Collection = get_collection("workflow_transitions")

    # =========================================================================
    # Workflow CRUD
    # =========================================================================

    def create_workflow(self, workflow: Workflow) -> Workflow:
        """Create a workflow header (states and transitions are stored separately)"""
        doc = to_document(workflow, "workflow_id")
        for key in _WORKFLOW_EXCLUDE:
            doc.pop(key, None)

        try:
            self._workflows.insert_one(doc)
        except DuplicateKeyError:
            raise AlreadyExistsError(f"Workflow {workflow.workflow_id} already exists")
        logger.info(f"Created workflow: {workflow.code}", extra={"workflow_id": workflow.workflow_id})
        return workflow

    def get_workflow(self, workflow_id: str, include_deleted: bool = False) -> Optional[Workflow]:
        """Get workflow header by ID (states/transitions not loaded)"""
        query: Dict[str, Any] = {"workflow_id": workflow_id}
        if not include_deleted:
            query["deleted_at"] = None
        doc = from_document(self._workflows.find_one(query))
        return Workflow.model_validate(doc) if doc else None

    def get_workflow_or_raise(self, workflow_id: str, include_deleted: bool = False) -> Workflow:
        workflow = self.get_workflow(workflow_id, include_deleted=include_deleted)
        if not workflow:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    def get_by_code(self, code: str) -> Optional[Workflow]:
        """Get a non-deleted workflow by code"""
        doc = from_document(self._workflows.find_one({"code": code, "deleted_at": None}))
        return Workflow.model_validate(doc) if doc else None

    def code_exists(self, code: str, exclude_workflow_id: Optional[str] = None) -> bool:
        query: Dict[str, Any] = {"code": code, "deleted_at": None}
        if exclude_workflow_id:
            query["workflow_id"] = {"$ne": exclude_workflow_id}
        return self._workflows.count_documents(query, limit=1) > 0

    def list_workflows(
        self,
        active_only: bool = False,
        record_types: Optional[List[MatchRecordType]] = None,
        deleted: bool = False,
    ) -> List[Workflow]:
        """List workflow headers, newest first"""
        query: Dict[str, Any] = {"deleted_at": {"$ne": None} if deleted else None}
        if active_only:
            query["is_active"] = True
        if record_types:
            query["match_config.record_type"] = {"$in": [to_plain(rt) for rt in record_types]}

        cursor = self._workflows.find(query).sort([("updated_at", DESCENDING), ("code", ASCENDING)])
        return [Workflow.model_validate(from_document(doc)) for doc in cursor]

    def update_workflow(
        self,
        workflow_id: str,
        updates: Dict[str, Any],
        bump_version: bool = False
    ) -> Workflow:
        """
        Update workflow header fields

        Args:
            workflow_id: Workflow ID
            updates: Fields to $set
            bump_version: Increment the definition version (structural edits)
        """
        update: Dict[str, Any] = {"$set": {**to_plain(updates), "updated_at": utc_now()}}
        if bump_version:
            update["$inc"] = {"version": 1}

        result = self._workflows.find_one_and_update(
            {"workflow_id": workflow_id, "deleted_at": None},
            update,
            return_document=True
        )
        if result is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")

        logger.info(f"Updated workflow: {workflow_id}", extra={"workflow_id": workflow_id})
        return Workflow.model_validate(from_document(result))

    def touch_structure(self, workflow_id: str) -> None:
        """Record a structural edit: bump version and updated_at"""
        self.update_workflow(workflow_id, {}, bump_version=True)

    def clear_default(self, record_type: MatchRecordType, except_workflow_id: Optional[str] = None) -> int:
        """Unset is_default on other workflows of the same match record type"""
        query: Dict[str, Any] = {
            "is_default": True,
            "match_config.record_type": to_plain(record_type),
            "deleted_at": None,
        }
        if except_workflow_id:
            query["workflow_id"] = {"$ne": except_workflow_id}
        result = self._workflows.update_many(query, {"$set": {"is_default": False, "updated_at": utc_now()}})
        return result.modified_count

    def soft_delete_workflow(self, workflow_id: str) -> None:
        now = utc_now()
        result = self._workflows.update_one(
            {"workflow_id": workflow_id, "deleted_at": None},
            {"$set": {"deleted_at": now, "is_default": False, "is_active": False, "updated_at": now}}
        )
        if result.matched_count == 0:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        logger.info(f"Soft deleted workflow: {workflow_id}", extra={"workflow_id": workflow_id})

    def restore_workflow(self, workflow_id: str) -> Workflow:
        result = self._workflows.find_one_and_update(
            {"workflow_id": workflow_id, "deleted_at": {"$ne": None}},
            {"$set": {"deleted_at": None, "updated_at": utc_now()}},
            return_document=True
        )
        if result is None:
            raise WorkflowNotFoundError(f"Deleted workflow {workflow_id} not found")
        logger.info(f"Restored workflow: {workflow_id}", extra={"workflow_id": workflow_id})
        return Workflow.model_validate(from_document(result))

    def delete_workflow_permanently(self, workflow_id: str) -> None:
        """Remove a soft-deleted workflow and its states/transitions"""
        result = self._workflows.delete_one({"workflow_id": workflow_id, "deleted_at": {"$ne": None}})
        if result.deleted_count == 0:
            raise WorkflowNotFoundError(f"Deleted workflow {workflow_id} not found")
        self._states.delete_many({"workflow_id": workflow_id})
        self._transitions.delete_many({"workflow_id": workflow_id})
        logger.info(f"Permanently deleted workflow: {workflow_id}", extra={"workflow_id": workflow_id})

    # =========================================================================
    # States
    # =========================================================================

    def create_state(self, state: WorkflowState) -> WorkflowState:
        self._states.insert_one(to_document(state, "state_id"))
        return state

    def create_states_bulk(self, states: List[WorkflowState]) -> List[WorkflowState]:
        if states:
            self._states.insert_many([to_document(s, "state_id") for s in states])
        return states

    def get_state(self, state_id: str) -> Optional[WorkflowState]:
        doc = from_document(self._states.find_one({"state_id": state_id, "deleted_at": None}))
        return WorkflowState.model_validate(doc) if doc else None

    def get_state_or_raise(self, workflow_id: str, state_id: str) -> WorkflowState:
        state = self.get_state(state_id)
        if not state or state.workflow_id != workflow_id:
            raise StateNotFoundError(f"State {state_id} not found in workflow {workflow_id}")
        return state

    def list_states(self, workflow_id: str) -> List[WorkflowState]:
        """Non-deleted states of a workflow in display order"""
        cursor = self._states.find({"workflow_id": workflow_id, "deleted_at": None}).sort(
            [("sort_order", ASCENDING), ("name", ASCENDING)]
        )
        return [WorkflowState.model_validate(from_document(doc)) for doc in cursor]

    def update_state(self, state_id: str, updates: Dict[str, Any]) -> WorkflowState:
        result = self._states.find_one_and_update(
            {"state_id": state_id, "deleted_at": None},
            {"$set": to_plain(updates)},
            return_document=True
        )
        if result is None:
            raise StateNotFoundError(f"State {state_id} not found")
        return WorkflowState.model_validate(from_document(result))

    def soft_delete_state(self, state_id: str) -> None:
        result = self._states.update_one(
            {"state_id": state_id, "deleted_at": None},
            {"$set": {"deleted_at": utc_now()}}
        )
        if result.matched_count == 0:
            raise StateNotFoundError(f"State {state_id} not found")

    # =========================================================================
    # Transitions
    # =========================================================================

    def create_transition(self, transition: WorkflowTransition) -> WorkflowTransition:
        self._transitions.insert_one(to_document(transition, "transition_id"))
        return transition

    def create_transitions_bulk(self, transitions: List[WorkflowTransition]) -> List[WorkflowTransition]:
        if transitions:
            self._transitions.insert_many([to_document(t, "transition_id") for t in transitions])
        return transitions

    def get_transition(self, transition_id: str) -> Optional[WorkflowTransition]:
        doc = from_document(self._transitions.find_one({"transition_id": transition_id, "deleted_at": None}))
        return WorkflowTransition.model_validate(doc) if doc else None

    def get_transition_or_raise(self, workflow_id: str, transition_id: str) -> WorkflowTransition:
        transition = self.get_transition(transition_id)
        if not transition or transition.workflow_id != workflow_id:
            raise TransitionNotFoundError(f"Transition {transition_id} not found in workflow {workflow_id}")
        return transition

    def list_transitions(self, workflow_id: str) -> List[WorkflowTransition]:
        cursor = self._transitions.find({"workflow_id": workflow_id, "deleted_at": None}).sort(
            [("sort_order", ASCENDING), ("name", ASCENDING)]
        )
        return [WorkflowTransition.model_validate(from_document(doc)) for doc in cursor]

    def replace_transition(self, transition: WorkflowTransition) -> WorkflowTransition:
        """Store a fully validated transition (requirements/actions included)"""
        result = self._transitions.replace_one(
            {"transition_id": transition.transition_id, "deleted_at": None},
            to_document(transition, "transition_id")
        )
        if result.matched_count == 0:
            raise TransitionNotFoundError(f"Transition {transition.transition_id} not found")
        return transition

    def soft_delete_transition(self, transition_id: str) -> None:
        result = self._transitions.update_one(
            {"transition_id": transition_id, "deleted_at": None},
            {"$set": {"deleted_at": utc_now()}}
        )
        if result.matched_count == 0:
            raise TransitionNotFoundError(f"Transition {transition_id} not found")
