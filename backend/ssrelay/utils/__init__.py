from .alerts import AlertManager
from .scheduler import ScheduledJobRunner, compute_next_run

__all__ = ['AlertManager', 'ScheduledJobRunner', 'compute_next_run']
