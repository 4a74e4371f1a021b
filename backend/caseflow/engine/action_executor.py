"""Action Executor - Runs a transition's automated actions after commit

Synchronous actions run in execution_order on a bounded thread pool, each
blocking the next, within a per-transition budget. When the budget runs out
the running action is recorded as timed out and left to finish on its own
(its late result is appended to the history row), and the synchronous
actions that had not started are deferred to the async outbox.

Async actions (and deferred ones) of one transition become a single outbox
entry processed in execution_order by ActionOutboxProcessor.
"""
import contextvars
import os
import socket
import threading
import time
from datetime import timedelta
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout, Future
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..config.settings import settings
from ..domain.models import (
    Case, TransitionAction, ActionResult, ActionOutbox, NotificationOutbox,
    InAppNotification, EmailActionConfig, NotificationActionConfig,
    WebhookActionConfig, FieldUpdateActionConfig
)
from ..domain.enums import ActionType, ActionResultStatus, EmailRecipient
from ..domain.errors import ActionConfigError, ActionExecutionError
from ..repositories.case_repo import CaseRepository
from ..repositories.directory_repo import DirectoryRepository
from ..repositories.action_outbox_repo import ActionOutboxRepository
from ..repositories.notification_repo import NotificationRepository
from ..repositories.inapp_notification_repo import InAppNotificationRepository
from ..templates.transition_email import build_transition_email, render_placeholders
from .history_recorder import HistoryRecorder
from ..utils.idgen import generate_id, generate_outbox_id, generate_notification_id
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)

HandlerResult = Tuple[ActionResultStatus, Dict[str, Any]]

# Shared pool for synchronous actions
_action_pool: Optional[ThreadPoolExecutor] = None
_pool_lock = threading.Lock()


def get_action_pool() -> ThreadPoolExecutor:
    """Get global action thread pool"""
    global _action_pool
    with _pool_lock:
        if _action_pool is None:
            _action_pool = ThreadPoolExecutor(
                max_workers=settings.action_worker_threads,
                thread_name_prefix="caseflow-action"
            )
    return _action_pool


def shutdown_action_pool() -> None:
    global _action_pool
    with _pool_lock:
        if _action_pool is not None:
            _action_pool.shutdown(wait=False)
            _action_pool = None


def _result(action: TransitionAction, status: ActionResultStatus,
            detail: Optional[Dict[str, Any]] = None, error: Optional[str] = None) -> ActionResult:
    return ActionResult(
        action_id=action.action_id,
        action_type=action.action_type,
        name=action.name,
        is_async=action.is_async,
        status=status,
        detail=detail or {},
        error=error,
        executed_at=utc_now(),
    )


class ActionExecutor:
    """Dispatches and runs transition actions; failures never reach the caller"""

    def __init__(
        self,
        recorder: Optional[HistoryRecorder] = None,
        case_repo: Optional[CaseRepository] = None,
        directory_repo: Optional[DirectoryRepository] = None,
        outbox_repo: Optional[ActionOutboxRepository] = None,
        notification_repo: Optional[NotificationRepository] = None,
        inapp_repo: Optional[InAppNotificationRepository] = None,
        http_client: Optional[httpx.Client] = None,
        pool: Optional[ThreadPoolExecutor] = None,
        sync_timeout_seconds: Optional[float] = None,
    ):
        self.recorder = recorder or HistoryRecorder()
        self.case_repo = case_repo or CaseRepository()
        self.directory = directory_repo or DirectoryRepository()
        self.outbox_repo = outbox_repo or ActionOutboxRepository()
        self.notification_repo = notification_repo or NotificationRepository()
        self.inapp_repo = inapp_repo or InAppNotificationRepository()
        self._http_client = http_client
        self._pool = pool
        self.sync_timeout_seconds = (
            sync_timeout_seconds if sync_timeout_seconds is not None
            else settings.sync_action_timeout_seconds
        )
        self._handlers: Dict[ActionType, Callable[[TransitionAction, Case, Dict[str, Any]], HandlerResult]] = {
            ActionType.EMAIL: self._run_email,
            ActionType.NOTIFICATION: self._run_notification,
            ActionType.WEBHOOK: self._run_webhook,
            ActionType.FIELD_UPDATE: self._run_field_update,
        }

    @property
    def pool(self) -> ThreadPoolExecutor:
        return self._pool or get_action_pool()

    @property
    def http_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=settings.webhook_timeout_seconds)
        return self._http_client

    # =========================================================================
    # Dispatch (staged with the commit, run right after it)
    # =========================================================================

    def stage(
        self,
        actions: List[TransitionAction],
        case_id: str,
        history_id: str,
        context: Dict[str, Any],
        workflow_id: str,
        transition_id: str
    ) -> Optional[ActionOutbox]:
        """Outbox entry for the async actions, written with the commit; None when there are none"""
        queued = sorted((a for a in actions if a.is_active and a.is_async), key=lambda a: a.execution_order)
        if not queued:
            return None
        return ActionOutbox(
            outbox_id=generate_outbox_id(),
            history_id=history_id,
            case_id=case_id,
            workflow_id=workflow_id,
            transition_id=transition_id,
            actions=queued,
            context={**context, "history_id": history_id},
            created_at=utc_now(),
        )

    def dispatch(
        self,
        actions: List[TransitionAction],
        case_id: str,
        history_id: str,
        context: Dict[str, Any],
        workflow_id: str,
        transition_id: str,
        outbox_id: Optional[str] = None
    ) -> List[ActionResult]:
        """
        Run synchronous actions, queue the rest

        outbox_id is the id of the entry staged with the commit, so the queued
        actions land in that entry whether this call or recovery writes it.

        Returns:
            Results recorded now (sync outcomes plus deferred/timed out markers)
        """
        context = {**context, "history_id": history_id}
        active = sorted((a for a in actions if a.is_active), key=lambda a: a.execution_order)
        sync_actions = [a for a in active if not a.is_async]
        queued = [a for a in active if a.is_async]

        results: List[ActionResult] = []
        deadline = time.monotonic() + self.sync_timeout_seconds

        for index, action in enumerate(sync_actions):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                deferred = sync_actions[index:]
                results.extend(self._defer(deferred))
                queued.extend(deferred)
                break

            run_context = contextvars.copy_context()
            future = self.pool.submit(run_context.run, self.run_action, action, case_id, context)
            try:
                results.append(future.result(timeout=remaining))
            except FuturesTimeout:
                logger.warning(
                    f"Action '{action.name}' exceeded the synchronous budget; continuing in background",
                    extra={"case_id": case_id, "history_id": history_id}
                )
                results.append(_result(
                    action, ActionResultStatus.TIMED_OUT,
                    detail={"budget_seconds": self.sync_timeout_seconds}
                ))
                future.add_done_callback(self._late_result_callback(history_id))
                deferred = sync_actions[index + 1:]
                results.extend(self._defer(deferred))
                queued.extend(deferred)
                break

        self.recorder.record_action_results(history_id, results)

        if queued:
            queued.sort(key=lambda a: a.execution_order)
            self.outbox_repo.create(ActionOutbox(
                outbox_id=outbox_id or generate_outbox_id(),
                history_id=history_id,
                case_id=case_id,
                workflow_id=workflow_id,
                transition_id=transition_id,
                actions=queued,
                context=context,
                created_at=utc_now(),
            ))
        return results

    def _defer(self, actions: List[TransitionAction]) -> List[ActionResult]:
        return [_result(a, ActionResultStatus.DEFERRED, detail={"queued": True}) for a in actions]

    def _late_result_callback(self, history_id: str) -> Callable[[Future], None]:
        def record(future: Future) -> None:
            try:
                self.recorder.record_action_results(history_id, [future.result()])
            except Exception as e:
                logger.error(f"Failed to record late action result: {e}", extra={"history_id": history_id})
        return record

    # =========================================================================
    # Running one action
    # =========================================================================

    def run_action(self, action: TransitionAction, case_id: str, context: Dict[str, Any]) -> ActionResult:
        """Run one action against the current case state; never raises"""
        try:
            case = self.case_repo.get_case_or_raise(case_id)
            status, detail = self._handlers[action.action_type](action, case, context)
            logger.info(
                f"Action '{action.name}' ({action.action_type.value}) {status.value}",
                extra={"case_id": case_id, "action": action.action_type.value, "status": status.value}
            )
            return _result(action, status, detail=detail)
        except Exception as e:
            logger.error(
                f"Action '{action.name}' failed: {e}",
                extra={"case_id": case_id, "action": action.action_type.value},
                exc_info=not isinstance(e, (ActionExecutionError, httpx.HTTPError))
            )
            return _result(action, ActionResultStatus.FAILED, error=str(e))

    def placeholder_values(self, case: Case, context: Dict[str, Any]) -> Dict[str, Any]:
        """Template values from the current case and the transition context"""
        performed_by = context.get("performed_by") or {}
        return {
            "case_number": case.case_number,
            "title": case.title,
            "description": case.description,
            "record_type": case.record_type.value,
            "priority": case.priority,
            "severity": case.severity,
            "source": case.source,
            "old_state": context.get("from_state_name"),
            "new_state": context.get("to_state_name"),
            "transition_name": context.get("transition_name"),
            "performed_by": performed_by.get("display_name") or performed_by.get("email"),
            "comment": context.get("comment"),
            "case_url": f"{settings.frontend_url.rstrip('/')}/cases/{case.case_id}",
        }

    def _department_head_id(self, case: Case) -> Optional[str]:
        if not case.department_id:
            return None
        department = self.directory.get_department(case.department_id)
        return department.manager_id if department else None

    def _recipient_user_ids(self, groups: List[EmailRecipient], case: Case, context: Dict[str, Any]) -> List[str]:
        user_ids: List[str] = []
        for group in groups:
            if group == EmailRecipient.ASSIGNEE:
                user_ids.extend(case.assignee_ids or ([case.assignee_id] if case.assignee_id else []))
            elif group == EmailRecipient.PREVIOUS_ASSIGNEE:
                user_ids.extend(context.get("previous_assignee_ids") or [])
            elif group == EmailRecipient.CREATOR:
                user_ids.append(case.created_by.user_id)
            elif group == EmailRecipient.DEPARTMENT_HEAD:
                head = self._department_head_id(case)
                if head:
                    user_ids.append(head)
            elif group == EmailRecipient.REPORTER and case.reporter_email:
                reporter = self.directory.get_user_by_email(case.reporter_email)
                if reporter:
                    user_ids.append(reporter.user_id)
        return list(dict.fromkeys(user_ids))

    def _run_email(self, action: TransitionAction, case: Case, context: Dict[str, Any]) -> HandlerResult:
        config: EmailActionConfig = action.config
        if not config.enabled:
            return ActionResultStatus.SKIPPED, {"reason": "disabled"}

        emails: List[str] = []
        user_ids = self._recipient_user_ids(config.recipients, case, context)
        emails.extend(u.email for u in self.directory.get_users(user_ids) if u.is_active)
        if EmailRecipient.REPORTER in config.recipients and case.reporter_email:
            emails.append(case.reporter_email)
        if EmailRecipient.CREATOR in config.recipients:
            emails.append(case.created_by.email)
        if EmailRecipient.CUSTOM in config.recipients:
            emails.extend(config.custom_emails)

        recipients = list(dict.fromkeys(e.lower() for e in emails))
        if not recipients:
            return ActionResultStatus.SKIPPED, {"reason": "no_recipients"}

        rendered = build_transition_email(config, self.placeholder_values(case, context))
        notification = self.notification_repo.create_notification(NotificationOutbox(
            notification_id=generate_notification_id(),
            case_id=case.case_id,
            history_id=context.get("history_id"),
            action_id=action.action_id,
            recipients=recipients,
            subject=rendered["subject"],
            body=rendered["body"],
            created_at=utc_now(),
        ))
        return ActionResultStatus.SUCCEEDED, {
            "notification_id": notification.notification_id,
            "recipients": recipients,
        }

    def _run_notification(self, action: TransitionAction, case: Case, context: Dict[str, Any]) -> HandlerResult:
        config: NotificationActionConfig = action.config
        user_ids = self._recipient_user_ids(config.recipients, case, context)
        if EmailRecipient.CUSTOM in config.recipients:
            user_ids.extend(config.custom_user_ids)
        users = [u for u in self.directory.get_users(list(dict.fromkeys(user_ids))) if u.is_active]
        if not users:
            return ActionResultStatus.SKIPPED, {"reason": "no_recipients"}

        values = self.placeholder_values(case, context)
        now = utc_now()
        notifications = [
            InAppNotification(
                notification_id=generate_notification_id(),
                recipient_user_id=user.user_id,
                recipient_email=user.email,
                title=render_placeholders(config.title_template, values),
                message=render_placeholders(config.message_template, values),
                case_id=case.case_id,
                history_id=context.get("history_id"),
                action_url=f"/cases/{case.case_id}",
                created_at=now,
            )
            for user in users
        ]
        self.inapp_repo.create_notifications_bulk(notifications)
        return ActionResultStatus.SUCCEEDED, {"recipient_user_ids": [u.user_id for u in users]}

    def _run_webhook(self, action: TransitionAction, case: Case, context: Dict[str, Any]) -> HandlerResult:
        config: WebhookActionConfig = action.config
        payload: Dict[str, Any] = {
            "event": "case.transitioned",
            "case_id": case.case_id,
            "case_number": case.case_number,
            "history_id": context.get("history_id"),
            "transition": {
                "transition_id": context.get("transition_id"),
                "name": context.get("transition_name"),
                "from_state": context.get("from_state_name"),
                "to_state": context.get("to_state_name"),
            },
            "performed_by": context.get("performed_by"),
        }
        if config.include_case:
            payload["case"] = case.model_dump(mode="json", exclude={"pending_history", "pending_actions"})

        response = self.http_client.request(
            config.method,
            config.url,
            json=payload,
            headers=config.headers,
            timeout=config.timeout_seconds or settings.webhook_timeout_seconds,
        )
        response.raise_for_status()
        return ActionResultStatus.SUCCEEDED, {"status_code": response.status_code}

    def _run_field_update(self, action: TransitionAction, case: Case, context: Dict[str, Any]) -> HandlerResult:
        config: FieldUpdateActionConfig = action.config
        old_value = case.field_value(config.field_name)
        new_value = config.value

        if not config.field_name.startswith("custom_fields."):
            candidate = case.model_dump()
            candidate[config.field_name] = config.value
            try:
                new_value = getattr(Case.model_validate(candidate), config.field_name)
            except PydanticValidationError as e:
                raise ActionConfigError(
                    f"Value {config.value!r} is not valid for field '{config.field_name}'",
                    details={"errors": e.errors(include_url=False)}
                )

        self.case_repo.apply_field_updates(case.case_id, {config.field_name: new_value})
        return ActionResultStatus.SUCCEEDED, {
            "field_name": config.field_name,
            "old_value": old_value,
            "new_value": new_value,
        }


class ActionOutboxProcessor:
    """
    Worker side of the async action path

    Entries are claimed with an atomic lock, their actions run in
    execution_order, and every outcome is appended to the history row
    (history_id is the correlation key). Actions that already succeeded or
    were skipped are not repeated when an entry is retried.
    """

    def __init__(
        self,
        executor: Optional[ActionExecutor] = None,
        outbox_repo: Optional[ActionOutboxRepository] = None,
        worker_id: Optional[str] = None
    ):
        self.executor = executor or ActionExecutor()
        self.outbox_repo = outbox_repo or self.executor.outbox_repo
        self.worker_id = worker_id or f"{socket.gethostname()}-{os.getpid()}-{generate_id()[:8]}"

    def process_pending(self, limit: int = 50) -> Dict[str, int]:
        """Process ready entries; returns counters for logging"""
        stats = {"claimed": 0, "completed": 0, "failed": 0}
        for entry in self.outbox_repo.get_pending(limit=limit):
            if not self.outbox_repo.acquire_lock(
                entry.outbox_id, self.worker_id, settings.action_lock_duration_seconds
            ):
                continue
            stats["claimed"] += 1
            if self.process_entry(entry):
                stats["completed"] += 1
            else:
                stats["failed"] += 1

        if stats["claimed"]:
            logger.info(
                f"Action outbox: {stats['completed']} completed, {stats['failed']} failed",
                extra={"action": "process_outbox"}
            )
        return stats

    def process_entry(self, entry: ActionOutbox) -> bool:
        """Run an entry the caller holds the lock for; True when every action is done"""
        context = {**entry.context, "history_id": entry.history_id}
        errors: List[str] = []

        for action in sorted(entry.actions, key=lambda a: a.execution_order):
            if action.action_id in entry.completed_action_ids:
                continue
            result = self.executor.run_action(action, entry.case_id, context)
            result.detail["attempt"] = entry.retry_count + 1
            self.executor.recorder.record_action_results(entry.history_id, [result])
            if result.status == ActionResultStatus.FAILED:
                errors.append(f"{action.name}: {result.error}")
            else:
                self.outbox_repo.mark_action_done(entry.outbox_id, action.action_id)

        if errors:
            self.outbox_repo.mark_attempt_failed(
                entry.outbox_id,
                "; ".join(errors),
                max_retries=settings.action_max_retries,
                retry_base_seconds=settings.action_retry_base_seconds,
            )
            return False

        self.outbox_repo.mark_completed(entry.outbox_id)
        return True

    def recover_pending_history(self, limit: int = 100) -> int:
        """Materialise staged history rows a crash left on case documents"""
        cases = self.executor.case_repo.find_with_pending_history(limit=limit)
        for case in cases:
            self.executor.recorder.flush_pending(case)
        if cases:
            logger.warning(f"Recovered {len(cases)} staged history row(s)", extra={"action": "recover_history"})
        return len(cases)

    def recover_pending_actions(self, limit: int = 100) -> int:
        """Queue async actions a crash left staged on case documents"""
        staged_before = utc_now() - timedelta(seconds=settings.action_lock_duration_seconds)
        cases = self.executor.case_repo.find_with_pending_actions(staged_before, limit=limit)
        for case in cases:
            entry = case.pending_actions
            self.outbox_repo.create(entry)
            self.executor.case_repo.clear_pending_actions(case.case_id, entry.outbox_id)
            logger.warning(
                "Queued staged async actions left behind by an interrupted transition",
                extra={"case_id": case.case_id, "history_id": entry.history_id, "outbox_id": entry.outbox_id}
            )
        return len(cases)
