"""
Background jobs: the daily afternoon and end of day resets, and the periodic
autosave. Each job works out its next run time from the current time and is
re-armed right after it fires.
"""
import logging
import threading
from datetime import datetime, time, timedelta

logger = logging.getLogger(__name__)


def parse_time_of_day(value):
    """Parse 'HH:MM' into a datetime.time"""
    try:
        hour, minute = (int(part) for part in str(value).strip().split(':'))
        return time(hour, minute)
    except ValueError:
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM")


class DailyJob:
    """Runs ``action`` every day at a fixed wall-clock time"""

    def __init__(self, name, at, action):
        self.name = name
        self.at = at
        self.action = action

    def next_run(self, now):
        """Next trigger strictly after ``now``"""
        candidate = now.replace(hour=self.at.hour, minute=self.at.minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    def __repr__(self):
        return f'<DailyJob {self.name} at {self.at.strftime("%H:%M")}>'


class IntervalJob:
    """Runs ``action`` every ``interval_seconds``"""

    def __init__(self, name, interval_seconds, action):
        if interval_seconds <= 0:
            raise ValueError('interval_seconds must be positive')
        self.name = name
        self.interval = timedelta(seconds=interval_seconds)
        self.action = action

    def next_run(self, now):
        return now + self.interval

    def __repr__(self):
        return f'<IntervalJob {self.name} every {self.interval}>'


class JobScheduler:
    """Arms one timer thread per job and re-arms it after every run"""

    def __init__(self, clock=None, timer_factory=None):
        self._clock = clock or datetime.now
        self._timer_factory = timer_factory or threading.Timer
        self._jobs = []
        self._timers = {}
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self):
        return self._running

    def add_job(self, job):
        self._jobs.append(job)
        if self._running:
            self._arm(job)
        return job

    def start(self):
        with self._lock:
            if self._running:
                return
            self._running = True
        for job in self._jobs:
            self._arm(job)
        logger.info("Scheduled jobs: " + ", ".join(repr(job) for job in self._jobs))

    def shutdown(self):
        with self._lock:
            self._running = False
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _arm(self, job):
        now = self._clock()
        run_at = job.next_run(now)
        delay = max((run_at - now).total_seconds(), 0)
        timer = self._timer_factory(delay, self._fire, args=(job,))
        timer.daemon = True
        with self._lock:
            if not self._running:
                return
            self._timers[job.name] = timer
        timer.start()
        logger.debug(f"{job.name} scheduled for {run_at.strftime('%Y-%m-%d %H:%M:%S')}")

    def _fire(self, job):
        logger.info(f"Running scheduled job: {job.name}")
        try:
            job.action()
        except Exception:
            logger.exception(f"Scheduled job {job.name} failed")
        finally:
            if self._running:
                self._arm(job)
