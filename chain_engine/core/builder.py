"""
Fluent construction of task chains.

    chain_id = await (
        scheduler.begin_with(TaskRequest(worker_type_name="sync"))
        .then([TaskRequest(worker_type_name="upload"), TaskRequest(worker_type_name="sync")])
        .enqueue()
    )
"""

from typing import Awaitable, Callable, Optional, Union

from chain_engine.core.models import Stage, TaskRequest

TaskOrTasks = Union[TaskRequest, list[TaskRequest]]
Enqueuer = Callable[[list[Stage]], Awaitable[str]]


def _as_stage(tasks: TaskOrTasks) -> Stage:
    if isinstance(tasks, TaskRequest):
        return [tasks]
    stage = list(tasks)
    if not stage:
        raise ValueError("A stage must contain at least one task")
    return stage


class ChainBuilder:
    """Builds an ordered list of stages; each call to then() adds one stage."""

    def __init__(self, first: TaskOrTasks, enqueuer: Optional[Enqueuer] = None):
        self._stages: list[Stage] = [_as_stage(first)]
        self._enqueuer = enqueuer

    def then(self, tasks: TaskOrTasks) -> "ChainBuilder":
        """Append a stage that runs after every previous stage succeeded."""
        self._stages.append(_as_stage(tasks))
        return self

    @property
    def stages(self) -> list[Stage]:
        return [list(stage) for stage in self._stages]

    async def enqueue(self) -> str:
        """Persist and queue the chain. Returns its id."""
        if self._enqueuer is None:
            raise RuntimeError("ChainBuilder has no scheduler to enqueue into")
        return await self._enqueuer(self.stages)
