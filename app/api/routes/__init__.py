from . import jobs, status, tasks, worker

__all__ = ["jobs", "status", "tasks", "worker"]
