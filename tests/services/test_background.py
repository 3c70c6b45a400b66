# tests/services/test_background.py
"""Test the background job worker and the scheduler thread."""
import threading
import time
from unittest.mock import patch

from automation_server.services import jobs, notifications, scheduler, worker
from automation_server.services.loop import BackgroundLoop


class TestSubmitJob:
    """Test submit_job() deduplication."""

    def test_same_job_is_not_processed_twice(self):
        started = threading.Event()
        release = threading.Event()

        def slow_pipeline(job_id, run_id=None):
            started.set()
            release.wait(timeout=5)

        with patch("automation_server.services.worker.process_job", side_effect=slow_pipeline) as mock_process:
            assert worker.submit_job("job-1") is True
            assert started.wait(timeout=5)
            assert worker.submit_job("job-1") is False
            release.set()

            for _ in range(50):
                if "job-1" not in worker._processing_jobs:
                    break
                time.sleep(0.05)

            assert "job-1" not in worker._processing_jobs
            assert mock_process.call_count == 1

    def test_crashing_pipeline_is_contained(self):
        with patch("automation_server.services.worker.process_job", side_effect=RuntimeError("boom")):
            worker._run_pipeline("job-2", None)
        assert "job-2" not in worker._processing_jobs

    @patch("automation_server.services.worker.submit_job", return_value=True)
    def test_queued_manual_jobs_are_picked_up(self, mock_submit, make_channel):
        channel = make_channel(max_active_tasks=5)
        manual = jobs.create_job("manual")
        jobs.create_job("auto", channel_id=channel.channel_id, is_auto=True)

        worker._process_queued_jobs()

        mock_submit.assert_called_once_with(manual.job_id)


class TestScheduler:
    """Test the scheduler thread lifecycle."""

    @patch("automation_server.services.scheduler._tick")
    def test_start_runs_a_pass_and_stops(self, mock_tick):
        scheduler.start_scheduler(interval_s=1)
        try:
            assert scheduler.is_running()
            for _ in range(50):
                if mock_tick.called:
                    break
                time.sleep(0.05)
            assert mock_tick.called
        finally:
            scheduler.stop_scheduler()
        assert not scheduler.is_running()

    @patch("automation_server.services.scheduler._tick", side_effect=RuntimeError("db down"))
    def test_failing_pass_keeps_thread_alive(self, mock_tick):
        scheduler.start_scheduler(interval_s=1)
        try:
            for _ in range(50):
                if mock_tick.called:
                    break
                time.sleep(0.05)
            assert scheduler.is_running()
        finally:
            scheduler.stop_scheduler()


class TestBackgroundLoop:
    """Start/stop semantics shared by the worker and the scheduler."""

    def test_second_start_is_refused(self):
        loop = BackgroundLoop("test loop", lambda: None, 1)
        assert loop.start() is True
        try:
            assert loop.start() is False
        finally:
            loop.stop()
        assert not loop.running

    def test_stop_without_start_is_a_noop(self):
        loop = BackgroundLoop("idle loop", lambda: None, 1)
        loop.stop()
        assert not loop.running


class TestPushTokens:
    def test_register_is_idempotent(self):
        notifications.register_token("device-1", owner="ops")
        notifications.register_token("device-1", owner="ops")
        assert notifications.list_tokens() == ["device-1"]
        assert notifications.list_tokens(owner="someone") == []

    def test_notify_without_notifier(self):
        notifications.register_token("device-1")
        job = jobs.create_job("prompt")
        assert notifications.notify_job_ready(job) == 0

    def test_notifier_failure_is_logged_not_raised(self, push):
        notifications.register_token("device-1")
        job = jobs.create_job("prompt")
        with patch.object(push, "notify", side_effect=ConnectionError("push down")):
            assert notifications.notify_job_ready(job) == 0
