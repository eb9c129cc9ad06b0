import inspect
from typing import Any, ClassVar, Generic, Protocol, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Registry(Generic[T]):
    """Named implementations, frozen once the application is configured."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation; each name may be registered once."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        if name in self._implementations:
            raise ValueError(
                f"{self.name} implementation already registered with name: {name}"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """Registered names in registration order."""
        return list(self._implementations)

    def freeze(self) -> None:
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen


class JobHandler(Protocol):
    """What the executor needs from a job type."""

    # Schema the payload must satisfy at enqueue time
    payload_model: ClassVar[type[BaseModel]]

    async def run(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        """
        Run a background job.

        Args:
            payload: Job-specific parameters as stored with the job

        Returns:
            Optional JSON-serializable result stored with the completed job

        Raises:
            TransientExecutionError: failure worth retrying
            PermanentExecutionError: failure that retrying cannot fix
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Maps job types to their handlers; one registry per engine."""

    def __init__(self):
        super().__init__("Job")

    def register(self, name: str, implementation: JobHandler) -> None:
        if not self._frozen:
            _check_handler(name, implementation)
        super().register(name, implementation)


def _check_handler(name: str, handler: Any) -> None:
    payload_model = getattr(handler, "payload_model", None)
    if not (isinstance(payload_model, type) and issubclass(payload_model, BaseModel)):
        raise TypeError(f"Handler for '{name}' must define a pydantic payload_model")
    if not inspect.iscoroutinefunction(getattr(handler, "run", None)):
        raise TypeError(f"Handler for '{name}' must define an async run(payload)")
