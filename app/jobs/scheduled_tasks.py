import threading
import time

import schedule

from infrastructure.logging import get_module_logger
from infrastructure.services import get_device_registry, get_notification_service

logger = get_module_logger()


def safe_run(job):
    def wrapper(*args, **kwargs):
        try:
            job(*args, **kwargs)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("scheduled_job_failed", job=job.__name__, error=str(e))

    return wrapper


def init():
    logger.info("scheduled_tasks_initialized")

    schedule.every(5).minutes.do(safe_run(scheduler_heartbeat))
    schedule.every(1).minutes.do(safe_run(send_due_notifications))
    schedule.every().day.at("03:00").do(safe_run(cleanup_stale_tokens))


def scheduler_heartbeat():
    logger.info("scheduler_heartbeat", time=time.ctime())


def send_due_notifications():
    run = get_notification_service().send_due_notifications()
    if run.results or run.skipped:
        logger.info(
            "scheduled_notifications_sent",
            sent=len(run.results),
            skipped=len(run.skipped),
        )


def cleanup_stale_tokens():
    get_device_registry().prune()


def run_continuously(interval=1):
    """Continuously run, while executing pending jobs at each
    elapsed time interval.
    @return cease_continuous_run: threading. Event which can
    be set to cease continuous run. Missed jobs are not run
    again: a job due every minute with a one hour interval
    runs once per interval.
    """
    cease_continuous_run = threading.Event()

    class ScheduleThread(threading.Thread):
        @classmethod
        def run(cls):
            while not cease_continuous_run.is_set():
                schedule.run_pending()
                time.sleep(interval)

    continuous_thread = ScheduleThread(daemon=True, name="scheduled-tasks")
    continuous_thread.start()
    return cease_continuous_run
