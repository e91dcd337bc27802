"""
Node execution outcomes.

A node executor either finishes synchronously or hands back a job whose
result arrives later (remote agent callback, local timer, background task).
The outcome makes that explicit instead of hiding it in callbacks.

Example:
    ```python
    outcome = await executor.execute(node, workflow, context)

    match outcome:
        case Proceed(handles=handles):
            ...  # node is done, follow ``handles``
        case AwaitJob(job_id=job_id):
            ...  # node finishes when the job is reported
    ```
"""

from dataclasses import dataclass

__all__ = [
    "Proceed",
    "AwaitJob",
    "Outcome",
]


@dataclass(frozen=True)
class Proceed:
    """
    Node finished; the walk continues along ``handles``.

    Attributes:
        handles: Outgoing handles to activate, None for the default edges
        output: Optional output recorded on the node's job
    """

    handles: tuple[str, ...] | None = None
    output: str | None = None


@dataclass(frozen=True)
class AwaitJob:
    """Node finishes when job ``job_id`` is reported."""

    job_id: str


Outcome = Proceed | AwaitJob
