"""Workflow Matcher - Select the workflow a new case is attached to"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..domain.models import Workflow, MatchConfig, CaseAttributes
from ..domain.enums import RecordType, MatchRecordType
from ..domain.errors import NoWorkflowMatchError
from .catalog import WorkflowCatalog, compatible_match_types
from ..utils.logger import get_logger
from ..utils.time import ensure_utc

logger = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _in_range(value: Optional[int], low: Optional[int], high: Optional[int]) -> bool:
    """Inclusive range check; a case without a value is not excluded"""
    if value is None:
        return True
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


def _in_set(value: Optional[str], allowed: List[str]) -> bool:
    """Empty list means no restriction"""
    if not allowed:
        return True
    return value is not None and value in allowed


class WorkflowMatcher:
    """
    Pure selection over the current catalog

    1. Active workflows whose match record type is the case type, "all",
       or legacy "both" for incidents/requests
    2. Every restricting criterion must accept the case
    3. Most specific wins; ties go to the latest updated_at, then code
    4. Nothing left: the default workflow for the type, else NoWorkflowMatch
    """

    def __init__(self, catalog: Optional[WorkflowCatalog] = None):
        self.catalog = catalog or WorkflowCatalog()

    def match(self, attrs: CaseAttributes, record_type: RecordType) -> Workflow:
        """
        Select the workflow for a case

        Raises:
            NoWorkflowMatchError: nothing matches and no default exists
        """
        record_type = RecordType(record_type)
        candidates = self.catalog.list_active(record_type)

        matched = [w for w in candidates if not self.rejections(w.match_config, attrs, record_type)]
        if matched:
            selected = sorted(matched, key=self._rank_key)[0]
            logger.info(
                f"Matched workflow {selected.code} for {record_type.value} "
                f"({len(matched)} candidate(s))",
                extra={"workflow_id": selected.workflow_id}
            )
            return selected

        default = self._default_for(candidates, record_type)
        if default is None:
            logger.warning(f"No workflow matches {record_type.value} case and no default is configured")
            raise NoWorkflowMatchError(
                f"No workflow applies to this {record_type.value} and no default workflow is configured",
                details={"record_type": record_type.value, "attributes": attrs.model_dump()}
            )

        logger.info(
            f"Falling back to default workflow {default.code} for {record_type.value}",
            extra={"workflow_id": default.workflow_id}
        )
        return default

    def explain(self, attrs: CaseAttributes, record_type: RecordType) -> Dict[str, Any]:
        """Ranked candidates with rejection reasons, for the admin match preview"""
        record_type = RecordType(record_type)
        candidates = self.catalog.list_active(record_type)

        rows = []
        for workflow in sorted(candidates, key=self._rank_key):
            reasons = self.rejections(workflow.match_config, attrs, record_type)
            rows.append({
                "workflow_id": workflow.workflow_id,
                "code": workflow.code,
                "name": workflow.name,
                "is_default": workflow.is_default,
                "specificity": workflow.match_config.specificity(),
                "matches": not reasons,
                "rejected_by": reasons,
            })

        try:
            selected: Optional[Workflow] = self.match(attrs, record_type)
        except NoWorkflowMatchError:
            selected = None

        return {
            "record_type": record_type.value,
            "selected_workflow_id": selected.workflow_id if selected else None,
            "candidates": rows,
        }

    def rejections(self, config: MatchConfig, attrs: CaseAttributes, record_type: RecordType) -> List[str]:
        """Names of the criteria that reject the case (empty list = match)"""
        reasons = []
        if MatchRecordType(config.record_type) not in compatible_match_types(record_type):
            reasons.append("record_type")
        if not _in_set(attrs.classification_id, config.classification_ids):
            reasons.append("classification")
        if not _in_set(attrs.location_id, config.location_ids):
            reasons.append("location")
        if not _in_set(attrs.source, config.sources):
            reasons.append("source")
        if not _in_range(attrs.severity, config.severity_min, config.severity_max):
            reasons.append("severity")
        if not _in_range(attrs.priority, config.priority_min, config.priority_max):
            reasons.append("priority")
        return reasons

    @staticmethod
    def _rank_key(workflow: Workflow) -> Tuple[int, float, str]:
        updated = ensure_utc(workflow.updated_at) or _EPOCH
        return (-workflow.match_config.specificity(), -updated.timestamp(), workflow.code)

    def _default_for(self, candidates: List[Workflow], record_type: RecordType) -> Optional[Workflow]:
        """Default workflow, preferring an exact record type over "both" over "all" """
        order = [MatchRecordType(record_type.value), MatchRecordType.BOTH, MatchRecordType.ALL]
        preference = {mt: i for i, mt in enumerate(order)}
        defaults = [
            w for w in candidates
            if w.is_default and MatchRecordType(w.match_config.record_type) in compatible_match_types(record_type)
        ]
        if not defaults:
            return None
        return sorted(defaults, key=lambda w: (preference[MatchRecordType(w.match_config.record_type)], w.code))[0]
