"""Script to print a workflow's structure and readiness report

Run: python -m scripts.validate_workflow <workflow_id | code>
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from caseflow.domain.errors import WorkflowNotFoundError
from caseflow.services.workflow_service import WorkflowService


def validate_workflow(ref: str) -> int:
    service = WorkflowService()
    header = service.repo.get_by_code(ref.upper())
    workflow_id = header.workflow_id if header else ref

    try:
        workflow = service.get_workflow(workflow_id)
    except WorkflowNotFoundError:
        print(f"Workflow {ref} not found")
        return 1

    print(f"Workflow: {workflow.name} ({workflow.code})")
    print(f"   Version: {workflow.version}  Active: {workflow.is_active}  Default: {workflow.is_default}")
    print(f"   Match: {workflow.match_config.model_dump(mode='json')}")
    print()

    print("=" * 60)
    print(f"STATES ({len(workflow.states)})")
    print("=" * 60)
    names = {s.state_id: s.name for s in workflow.states}
    for state in workflow.states:
        sla = f"  SLA {state.sla_hours}h" if state.sla_hours is not None else ""
        print(f"   [{state.state_type.value}] {state.name} ({state.code}){sla}")

    print("\n" + "=" * 60)
    print(f"TRANSITIONS ({len(workflow.transitions)})")
    print("=" * 60)
    for t in workflow.transitions:
        print(f"   {names.get(t.from_state_id)} --[{t.code}]--> {names.get(t.to_state_id)}")
        if t.allowed_roles:
            print(f"      roles: {', '.join(t.allowed_roles)}")
        for r in t.requirements:
            flag = "required" if r.is_mandatory else "optional"
            print(f"      requirement: {r.requirement_type.value} ({flag})")
        for a in t.ordered_actions():
            mode = "async" if a.is_async else "sync"
            print(f"      action {a.execution_order}: {a.action_type.value} {a.name} ({mode})")

    report = service.validate_workflow(workflow.workflow_id)
    print("\n" + "=" * 60)
    print("VALIDATION RESULTS")
    print("=" * 60)
    for e in report["errors"]:
        print(f"   ERROR   {e['type']}: {e['message']}")
    for w in report["warnings"]:
        print(f"   WARNING {w['type']}: {w['message']}")
    print("\nWORKFLOW IS VALID" if report["is_valid"] else "\nWORKFLOW HAS ERRORS")
    return 0 if report["is_valid"] else 2


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python -m scripts.validate_workflow <workflow_id | code>")
        sys.exit(64)
    sys.exit(validate_workflow(sys.argv[1]))
