"""
Processor Registry — maps every step type to its processor.

The dispatch table is keyed by StepType and checked for completeness when
the registry is built: a StepType without a processor is a startup error,
an unknown tag at run time is an UnsupportedStepTypeError.
"""

from typing import Dict, Type, Union

from core.constants import StepType
from core.exceptions import UnsupportedStepTypeError
from processors.base import ProcessorDependencies, StepProcessor
from processors.implementations.control import CONTROL_PROCESSORS
from processors.implementations.human import HUMAN_PROCESSORS
from processors.implementations.notification import NOTIFICATION_PROCESSORS
from processors.implementations.webhook import WEBHOOK_PROCESSORS

BUILTIN_PROCESSORS: Dict[StepType, Type[StepProcessor]] = {
    **CONTROL_PROCESSORS,
    **HUMAN_PROCESSORS,
    **NOTIFICATION_PROCESSORS,
    **WEBHOOK_PROCESSORS,
}


class ProcessorRegistry:
    """One processor instance per step type, sharing the same collaborators."""

    def __init__(
        self,
        deps: ProcessorDependencies,
        processors: Dict[StepType, Type[StepProcessor]] = None,
    ):
        classes = processors if processors is not None else BUILTIN_PROCESSORS

        missing = [t.value for t in StepType if t not in classes]
        if missing:
            raise RuntimeError(f"No processor registered for step type(s): {', '.join(missing)}")

        self.deps = deps
        self._processors: Dict[StepType, StepProcessor] = {
            step_type: cls(deps) for step_type, cls in classes.items()
        }

    def get(self, step_type: Union[str, StepType]) -> StepProcessor:
        """Processor for a step-type tag.

        Raises:
            UnsupportedStepTypeError: The tag is not one of the known step types
        """
        try:
            key = StepType(step_type)
        except ValueError:
            raise UnsupportedStepTypeError(str(step_type)) from None
        return self._processors[key]

    @property
    def available_types(self) -> list:
        return [t.value for t in self._processors]
