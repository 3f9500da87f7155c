"""
Celery tasks package.

- maintenance_tasks: Periodic sweep of expired codes, verifiers, sessions and refresh tokens
"""

from authcore.tasks import maintenance_tasks

__all__ = ["maintenance_tasks"]
