"""Error taxonomy for the task state machine and batch orchestrator."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for pipeline failures surfaced to callers."""


class TaskNotFoundError(PipelineError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class BatchNotFoundError(PipelineError):
    def __init__(self, batch_id: str) -> None:
        super().__init__(f"Batch not found: {batch_id}")
        self.batch_id = batch_id


class StageExecutionError(PipelineError):
    """An external collaborator failed or returned unusable data."""

    def __init__(self, stage: int, message: str) -> None:
        super().__init__(f"Stage {stage} failed: {message}")
        self.stage = stage


class CannotResumeError(PipelineError):
    """Resume requested at a stage whose predecessor outputs are missing."""

    def __init__(self, task_id: str, stage: int, missing: str) -> None:
        super().__init__(
            f"cannot-resume: task {task_id} cannot start at stage {stage}, missing {missing}",
        )
        self.task_id = task_id
        self.stage = stage
        self.missing = missing


class SharedAnalysisError(PipelineError):
    """The batch-wide reference analysis could not be produced or loaded."""

    def __init__(self, batch_id: str, message: str) -> None:
        super().__init__(f"Shared analysis failed for batch {batch_id}: {message}")
        self.batch_id = batch_id


class RegenerationError(PipelineError):
    """Regeneration request rejected before any external call."""


class InvalidSubmissionError(ValueError):
    """Submission payload rejected at the inbound boundary."""


class BatchBusyError(PipelineError):
    """Another run holds the claim on this batch."""

    def __init__(self, batch_id: str) -> None:
        super().__init__(f"Batch {batch_id} is already being run by another owner")
        self.batch_id = batch_id
