"""Adapters for the external collaborators: task source, ledger, Moltbook."""

from moltworker.platform.http import ErrorKind, Result
from moltworker.platform.ledger import ReputationLedger
from moltworker.platform.moltbook import Moltbook, SendOutcome
from moltworker.platform.tasks import (
    HttpTaskSource,
    LocalTaskSource,
    Task,
    TaskSource,
    TaskStatus,
    create_task_source,
)

__all__ = [
    "ErrorKind",
    "Result",
    "ReputationLedger",
    "Moltbook",
    "SendOutcome",
    "HttpTaskSource",
    "LocalTaskSource",
    "Task",
    "TaskSource",
    "TaskStatus",
    "create_task_source",
]
