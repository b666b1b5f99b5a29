"""Adaptive multi-worker task scheduler."""

from agentloop.bus import CommunicationBus
from agentloop.controller import AdaptiveLoopController
from agentloop.dispatcher import TaskDispatcher
from agentloop.errors import AgentLoopError
from agentloop.registry import WorkerRegistry
from agentloop.task_queue import TaskQueue
from agentloop.types import Message, Task, TaskPriority, WorkerResult

__version__ = "0.1.0"

__all__ = [
    "AdaptiveLoopController",
    "AgentLoopError",
    "CommunicationBus",
    "Message",
    "Task",
    "TaskDispatcher",
    "TaskPriority",
    "TaskQueue",
    "WorkerRegistry",
    "WorkerResult",
]
