"""
Processor contract.

A processor turns source bytes into output bytes by running a Pipeline's
steps in order. Each processor declares a handler table keyed by
TransformKind; a step without a handler fails the job with ProcessorError.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from ..transforms import AssetKind, Pipeline, Transform, TransformKind


Handler = Callable[[Any, Transform], Any]


class ProcessorError(Exception):
    """A codec failure or an unsupported pipeline step."""

    def __init__(self, message: str, step: Optional[TransformKind] = None):
        super().__init__(message)
        self.step = step


class Processor(ABC):
    """Base class for per-asset-kind processors."""

    kind: AssetKind = AssetKind.UNKNOWN

    def __init__(self):
        self._handlers: Dict[TransformKind, Handler] = dict(self.handlers())
        invalid = [key for key in self._handlers if not isinstance(key, TransformKind)]
        if invalid:
            raise TypeError(f"{type(self).__name__} registers unknown step kinds: {invalid}")

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def supported_steps(self):
        return frozenset(self._handlers)

    @abstractmethod
    def handlers(self) -> Dict[TransformKind, Handler]:
        """Map each supported TransformKind to a handler(state, step) -> state."""

    @abstractmethod
    def decode(self, data: bytes, pipeline: Pipeline) -> Any:
        """Turn source bytes into the processor's working state."""

    @abstractmethod
    def finish(self, state: Any, pipeline: Pipeline) -> bytes:
        """Produce the output bytes from the final state."""

    def transform(self, data: bytes, pipeline: Pipeline) -> bytes:
        """Run every pipeline step and return the encoded output."""
        state = self.decode(data, pipeline)
        for step in pipeline.steps:
            handler = self._handlers.get(step.kind)
            if handler is None:
                raise ProcessorError(f"{self.name} does not support step '{step.kind.value}'", step.kind)
            state = handler(state, step)
        return self.finish(state, pipeline)

    def unsupported(self, reason: str) -> Handler:
        """Handler for a known step this processor cannot perform."""
        def handler(state, step):
            raise ProcessorError(f"{step.kind.value}: {reason}", step.kind)
        return handler
