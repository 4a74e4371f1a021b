"""Tests for the APScheduler outbox worker jobs"""
import asyncio

from caseflow.scheduler.action_scheduler import ActionScheduler


class RecordingProcessor:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def process_pending(self):
        self.calls.append("process_pending")
        if self.fail:
            raise RuntimeError("mongo unavailable")
        return {"claimed": 0, "completed": 0, "failed": 0}

    def recover_pending_history(self):
        self.calls.append("recover_pending_history")
        return 0

    def recover_pending_actions(self):
        self.calls.append("recover_pending_actions")
        return 0


def test_jobs_delegate_to_processor():
    processor = RecordingProcessor()
    scheduler = ActionScheduler(processor=processor)

    asyncio.run(scheduler._process_actions())
    asyncio.run(scheduler._recover_history())

    assert processor.calls == ["process_pending", "recover_pending_history", "recover_pending_actions"]


def test_job_errors_do_not_escape():
    processor = RecordingProcessor(fail=True)
    scheduler = ActionScheduler(processor=processor)

    asyncio.run(scheduler._process_actions())

    assert processor.calls == ["process_pending"]


def test_start_and_stop():
    scheduler = ActionScheduler(processor=RecordingProcessor())

    async def run():
        scheduler.start()
        job_ids = sorted(job.id for job in scheduler.scheduler.get_jobs())
        scheduler.stop()
        return job_ids

    assert asyncio.run(run()) == ["process_action_outbox", "recover_pending_history"]
    assert scheduler.is_running is False
