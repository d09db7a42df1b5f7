"""push-scheduler: recurring Firebase push-notification schedules."""

__version__ = "1.0.0"
