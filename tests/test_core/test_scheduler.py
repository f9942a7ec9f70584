"""Tests for scheduler functionality."""

from unittest.mock import Mock, patch

from apscheduler.jobstores.base import JobLookupError

from alertdesk.scheduler import (
    ALERT_PROCESSING_JOB_ID,
    add_alert_processing_job,
    create_scheduler,
    job_error_listener,
    list_scheduled_jobs,
    shutdown_scheduler,
    start_scheduler,
)


class TestCreateScheduler:
    """Test scheduler creation functionality."""

    @patch("alertdesk.scheduler.MemoryJobStore")
    @patch("alertdesk.scheduler.ThreadPoolExecutor")
    @patch("alertdesk.scheduler.BackgroundScheduler")
    def test_create_scheduler(self, mock_bg_scheduler, mock_executor, mock_jobstore):
        """Test that scheduler is created with correct configuration."""
        mock_scheduler = Mock()
        mock_bg_scheduler.return_value = mock_scheduler

        scheduler = create_scheduler(max_workers=5)

        assert scheduler == mock_scheduler
        mock_executor.assert_called_once_with(max_workers=5)

        call_kwargs = mock_bg_scheduler.call_args[1]
        assert "jobstores" in call_kwargs
        assert "executors" in call_kwargs
        assert call_kwargs["job_defaults"]["max_instances"] == 1
        assert mock_scheduler.add_listener.call_count == 2

    def test_real_scheduler_is_not_running(self):
        """Test a freshly created scheduler is idle."""
        scheduler = create_scheduler()

        assert not scheduler.running
        assert scheduler.get_jobs() == []


class TestStartShutdownScheduler:
    """Test scheduler lifecycle management."""

    def test_start_scheduler(self):
        """Test starting an idle scheduler."""
        mock_scheduler = Mock()
        mock_scheduler.running = False

        start_scheduler(mock_scheduler)

        mock_scheduler.start.assert_called_once()

    def test_start_scheduler_already_running(self):
        """Test starting a running scheduler is a no-op."""
        mock_scheduler = Mock()
        mock_scheduler.running = True

        start_scheduler(mock_scheduler)

        mock_scheduler.start.assert_not_called()

    def test_shutdown_scheduler(self):
        """Test shutting down a running scheduler."""
        mock_scheduler = Mock()
        mock_scheduler.running = True

        shutdown_scheduler(mock_scheduler, wait=False)

        mock_scheduler.shutdown.assert_called_once_with(wait=False)

    def test_shutdown_scheduler_not_running(self):
        """Test shutting down an idle scheduler is a no-op."""
        mock_scheduler = Mock()
        mock_scheduler.running = False

        shutdown_scheduler(mock_scheduler)

        mock_scheduler.shutdown.assert_not_called()


class TestAlertProcessingJob:
    """Test registration of the processing job."""

    def test_add_alert_processing_job(self):
        """Test the job is registered on an interval trigger."""
        mock_scheduler = Mock()
        callback = Mock()

        add_alert_processing_job(mock_scheduler, callback, interval_minutes=7)

        mock_scheduler.remove_job.assert_called_once_with(ALERT_PROCESSING_JOB_ID)
        mock_scheduler.add_job.assert_called_once_with(
            func=callback,
            trigger="interval",
            minutes=7,
            id=ALERT_PROCESSING_JOB_ID,
            name="Alert Processing",
            replace_existing=True,
        )

    def test_add_job_when_none_exists(self):
        """Test a missing previous job is not an error."""
        mock_scheduler = Mock()
        mock_scheduler.remove_job.side_effect = JobLookupError(ALERT_PROCESSING_JOB_ID)

        add_alert_processing_job(mock_scheduler, Mock())

        mock_scheduler.add_job.assert_called_once()

    def test_list_scheduled_jobs(self):
        """Test each job is described on one line."""
        job = Mock(id=ALERT_PROCESSING_JOB_ID, next_run_time="2026-03-10 12:05:00")
        job.name = "Alert Processing"
        mock_scheduler = Mock()
        mock_scheduler.get_jobs.return_value = [job]

        lines = list_scheduled_jobs(mock_scheduler)

        assert lines == [
            "alert_processing: Alert Processing (next run: 2026-03-10 12:05:00)"
        ]


class TestListeners:
    """Test job event listeners."""

    @patch("alertdesk.scheduler.logger")
    def test_error_listener_logs(self, mock_logger):
        """Test crashed jobs are logged with their traceback."""
        event = Mock(job_id="alert_processing", exception=RuntimeError("boom"), traceback="tb")

        job_error_listener(event)

        mock_logger.error.assert_called_once_with(
            "Scheduled job crashed",
            job_id="alert_processing",
            error="boom",
            traceback="tb",
        )
