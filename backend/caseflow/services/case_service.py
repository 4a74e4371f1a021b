"""Case Service - Case lifecycle entry points used by the API"""
from typing import Any, Dict, List, Optional

from ..domain.models import (
    Case, CaseAttributes, CaseComment, TransitionPayload, TransitionHistory,
    ActorContext, AvailableTransition, AssignmentPreview, ExecuteResult
)
from ..domain.enums import RecordType
from ..domain.errors import ValidationError
from ..engine.engine import TransitionEngine
from ..utils.logger import get_logger

logger = get_logger(__name__)


class CaseService:
    """Service for case operations"""

    def __init__(self, engine: Optional[TransitionEngine] = None):
        self.engine = engine or TransitionEngine()

    def create_case(self, data: Dict[str, Any], actor: ActorContext) -> Case:
        """Create a case; workflow_id is optional and matched otherwise"""
        return self.engine.create_case(
            record_type=RecordType(data["record_type"]),
            title=data["title"],
            actor=actor,
            attributes=CaseAttributes.model_validate(data),
            workflow_id=data.get("workflow_id"),
            description=data.get("description"),
            reporter_email=data.get("reporter_email"),
            reporter_name=data.get("reporter_name"),
            custom_fields=data.get("custom_fields"),
            due_date=data.get("due_date"),
        )

    def get_case(self, case_id: str) -> Case:
        return self.engine.load_case(case_id)

    def get_available_transitions(self, case_id: str, actor: ActorContext) -> List[AvailableTransition]:
        return self.engine.available_transitions(case_id, actor)

    def get_available_transitions_for_workflow(
        self,
        workflow_id: str,
        case_id: str,
        actor: ActorContext
    ) -> List[AvailableTransition]:
        """Workflow-scoped listing; the case must belong to the workflow"""
        case = self.engine.load_case(case_id)
        if case.workflow_id != workflow_id:
            raise ValidationError(
                f"Case {case.case_number} does not use workflow {workflow_id}",
                details={"case_id": case_id, "workflow_id": case.workflow_id}
            )
        return self.engine.available_transitions(case_id, actor)

    def execute_transition(self, case_id: str, payload: TransitionPayload, actor: ActorContext) -> ExecuteResult:
        return self.engine.execute(case_id, payload, actor)

    def preview_assignment(self, case_id: str, transition_id: str) -> AssignmentPreview:
        return self.engine.preview_assignment(case_id, transition_id)

    def get_history(self, case_id: str) -> List[TransitionHistory]:
        return self.engine.history(case_id)

    def get_comments(self, case_id: str) -> List[CaseComment]:
        self.engine.load_case(case_id)
        return self.engine.case_repo.list_comments(case_id)
