"""Errors surfaced by the agent outside of the graph's own degradation paths."""


class ConfigurationError(RuntimeError):
    """Raised at construction when the agent cannot be wired up."""


class AgentTimeoutError(TimeoutError):
    """A turn did not complete within its deadline."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} did not complete within {timeout:g}s")
