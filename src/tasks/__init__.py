"""Recurring task definitions, instances, and the generator that links them."""

from src.tasks.generator import RecurringDefinitionNotFoundError, RecurringTaskGenerator
from src.tasks.models import RecurringDefinition, TaskInstance
from src.tasks.store import TaskStore

__all__ = [
    "RecurringDefinition",
    "RecurringDefinitionNotFoundError",
    "RecurringTaskGenerator",
    "TaskInstance",
    "TaskStore",
]
