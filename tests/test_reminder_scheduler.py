from apscheduler.schedulers.background import BackgroundScheduler

from schedulers import reminder_scheduler as sched
from services.exceptions import ConfigurationUnavailable


def test_jobs_registered(monkeypatch):
    monkeypatch.setattr(BackgroundScheduler, 'start', lambda self, *args, **kwargs: None)

    scheduler = sched.start_reminder_scheduler()

    jobs = {job.id: job for job in scheduler.get_jobs()}
    assert set(jobs) == {'day_reminder_ladder_job', 'night_reminder_ladder_job', 'reminder_sweep_job'}
    assert jobs['day_reminder_ladder_job'].args == ('day',)
    assert jobs['night_reminder_ladder_job'].args == ('night',)


def test_ladder_job_logs_storage_failure(monkeypatch, caplog):
    def down(shift_code):
        raise ConfigurationUnavailable("Database is unavailable")
    monkeypatch.setattr(sched, 'start_reminder_ladder', down)

    sched.start_ladder_job('day')

    assert "Reminder ladder for 'day' failed" in caplog.text


def test_sweep_job_runs_dispatch(monkeypatch):
    calls = []
    monkeypatch.setattr(sched, 'dispatch_due_reminders', lambda: calls.append(True))

    sched.sweep_job()

    assert calls == [True]
