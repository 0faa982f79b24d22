from typing import Any, Dict, Tuple, Type

from cron_scheduler.domain.job import TargetType
from cron_scheduler.executors.protocol import JobExecutor


class JobExecutorFactory:
    """
    Factory class for creating job executors, one per target type.
    """
    def __init__(self):
        self._executors: Dict[TargetType, Tuple[Type[JobExecutor], Dict[str, Any]]] = {}

    @classmethod
    def default(cls, body_limit: int = 5000) -> "JobExecutorFactory":
        """
        A factory with the built-in HTTP executor and the disabled script executor.
        """
        from cron_scheduler.executors.http import HttpJobExecutor
        from cron_scheduler.executors.script import ScriptJobExecutor

        factory = cls()
        factory.register(HttpJobExecutor, body_limit=body_limit)
        factory.register(ScriptJobExecutor)
        return factory

    @property
    def supported_targets(self) -> Tuple[TargetType, ...]:
        return tuple(self._executors)

    def register(self, executor_class: Type[JobExecutor], **options: Any) -> None:
        """
        Register a new executor class for the target type it supports.

        Args:
            executor_class (Type[JobExecutor]): The executor class to register.
            **options: Keyword arguments passed to the executor on construction.
        """
        target = TargetType(executor_class.supported_target())
        if target in self._executors:
            raise ValueError(f"An executor for target '{target.value}' is already registered")
        self._executors[target] = (executor_class, options)

    def get_executor(self, target_type: TargetType) -> JobExecutor:
        """
        Get an executor instance for a target type.

        Raises:
            KeyError: If no executor is registered for the target type.
        """
        target = TargetType(target_type)
        if target not in self._executors:
            raise KeyError(f"No executor registered for target '{target.value}'")
        executor_class, options = self._executors[target]
        return executor_class(**options)
