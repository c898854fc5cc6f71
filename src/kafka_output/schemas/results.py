"""
Task result summary.

A TaskReport is what a committed task hands back to the transaction runner.
It carries counts only: no offsets or resume state are tracked.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class TaskReport(BaseModel):
    """Outcome of one output task.

    Attributes:
        task_index: Index of the parallel task
        state: Final publisher state (committed or aborted)
        rows_processed: Rows converted and submitted
        messages_submitted: Distinct messages handed to the client
        messages_acknowledged: Messages acknowledged by the brokers
        messages_failed: Messages that failed after retries
        messages_retried: Resubmissions after retriable failures
        error_category: Error classification if the task aborted
        error_message: Error description if the task aborted (truncated)

    Example:
        >>> report = TaskReport(task_index=0, state="committed",
        ...                     rows_processed=2, messages_submitted=2,
        ...                     messages_acknowledged=2)
    """

    task_index: int = Field(..., ge=0)
    state: Literal["committed", "aborted"]
    rows_processed: int = Field(default=0, ge=0)
    messages_submitted: int = Field(default=0, ge=0)
    messages_acknowledged: int = Field(default=0, ge=0)
    messages_failed: int = Field(default=0, ge=0)
    messages_retried: int = Field(default=0, ge=0)
    error_category: Optional[str] = None
    error_message: Optional[str] = Field(default=None, max_length=500)

    @property
    def committed(self) -> bool:
        return self.state == "committed"
