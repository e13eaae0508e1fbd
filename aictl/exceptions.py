"""Custom exception hierarchy for aictl."""


class AictlError(Exception):
    """Base for all aictl errors."""


class ClusterError(AictlError):
    """The cluster API returned an unexpected response."""


class ResourceNotFoundError(ClusterError):
    """No resource with the given kind/name exists."""


class AlreadyExistsError(ClusterError):
    """A resource with the given kind/name already exists."""


class ConflictError(ClusterError):
    """Write rejected because the concurrency token was stale."""


class VersionNotFoundError(AictlError):
    """Requested code version does not exist for the agent."""

    def __init__(self, agent: str, version: str, known: list[str]):
        self.agent = agent
        self.version = version
        self.known = known
        listing = ", ".join(known) if known else "none"
        super().__init__(
            f"Version {version} not found for agent '{agent}' (available: {listing})"
        )


class TaskNotFoundError(AictlError):
    """Named task could not be located in agent source."""

    def __init__(self, task_name: str):
        self.task_name = task_name
        super().__init__(f"task not found: {task_name}")


class ProposalError(AictlError):
    """Not enough data to propose code for a task. Skipped, not fatal."""


class SynthesisError(AictlError):
    """Watching synthesis failed in strict mode."""


class PruneError(AictlError):
    """Deleting an old version failed in strict mode."""
