"""
Domain models: pydantic types for the engine.

All models are re-exported here for convenient access:

    from hostplay.core.models import Playbook, Task, Facts, Receipt, TaskRecord
"""

from hostplay.core.models.action import Action, Receipt
from hostplay.core.models.facts import Facts, OSFamily
from hostplay.core.models.playbook import LoopControl, Playbook, Task
from hostplay.core.models.result import TaskRecord, TaskStatus
from hostplay.core.models.settings import EngineSettings

__all__ = [
    # action.py
    "Action",
    "EngineSettings",
    # facts.py
    "Facts",
    "LoopControl",
    "OSFamily",
    # playbook.py
    "Playbook",
    "Receipt",
    "Task",
    # result.py
    "TaskRecord",
    "TaskStatus",
]
