"""Core data contracts for aflow workflows, executions and queue jobs."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

RETRY_CONFIG_KEY = "_retry"
ERROR_POLICY_CONFIG_KEY = "_errorPolicy"
RESERVED_CONFIG_KEYS = frozenset({RETRY_CONFIG_KEY, ERROR_POLICY_CONFIG_KEY})

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_MS = 1000.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AflowModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ACTIVE = "active"


class TriggerType(str, Enum):
    CRON = "cron"
    EMAIL = "email"
    WEBHOOK = "webhook"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    FAILED = "failed"
    COMPLETED = "completed"


class ErrorPolicyMode(str, Enum):
    FAIL = "fail"
    PAUSE = "pause"
    PAUSE_UNTIL = "pauseUntil"


class RetryPolicy(AflowModel):
    """How often a failing step is re-attempted.

    Total attempts are ``max_retries + 1``. Delays are in milliseconds and
    double on every attempt: ``initial_delay * 2 ** attempt``.
    """

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    initial_delay: float = Field(default=DEFAULT_INITIAL_DELAY_MS, ge=0)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class ErrorPolicy(AflowModel):
    """What happens once a step has exhausted its retries."""

    mode: ErrorPolicyMode = ErrorPolicyMode.FAIL
    resume_at: Optional[datetime] = None

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        if isinstance(value, str) and value.replace("-", "").replace("_", "").lower() == "pauseuntil":
            return ErrorPolicyMode.PAUSE_UNTIL
        return value

    @property
    def pauses(self) -> bool:
        return self.mode in (ErrorPolicyMode.PAUSE, ErrorPolicyMode.PAUSE_UNTIL)

    @classmethod
    def from_raw(cls, raw: Any) -> "ErrorPolicy":
        """Parse a stored policy document.

        Anything unparseable, and a ``pauseUntil`` without a usable
        ``resumeAt``, degrades to ``fail``.
        """
        if not isinstance(raw, dict):
            return cls()
        try:
            policy = cls.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"Ignoring invalid error policy {raw!r}: {exc}")
            return cls()
        if policy.mode is ErrorPolicyMode.PAUSE_UNTIL and policy.resume_at is None:
            return cls()
        if policy.mode is not ErrorPolicyMode.PAUSE_UNTIL:
            policy.resume_at = None
        elif policy.resume_at.tzinfo is None:
            policy.resume_at = policy.resume_at.replace(tzinfo=timezone.utc)
        return policy


class Trigger(AflowModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)

    @property
    def cron_expression(self) -> Optional[str]:
        """Return the schedule for a recurring trigger, if it has a usable one."""
        if self.type != TriggerType.CRON.value:
            return None
        expression = self.config.get("cronExpression")
        if not isinstance(expression, str) or not expression.strip():
            return None
        return expression


class Step(AflowModel):
    """One unit of work in a workflow."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    order: int = Field(ge=0)
    retry: Optional[RetryPolicy] = None
    error_policy: Optional[ErrorPolicy] = None

    def retry_policy(self, default: Optional[RetryPolicy] = None) -> RetryPolicy:
        """Explicit policy, else the reserved config key, else ``default``.

        Fields missing from the reserved key fall back to ``default``.
        """
        default = default or RetryPolicy()
        if self.retry is not None:
            return self.retry
        raw = self.config.get(RETRY_CONFIG_KEY)
        if not isinstance(raw, dict):
            return default
        try:
            return RetryPolicy.model_validate({**default.to_document(), **raw})
        except ValidationError as exc:
            logger.warning(f"Ignoring invalid retry config on step {self.id}: {exc}")
            return default

    def resolved_error_policy(self) -> ErrorPolicy:
        if self.error_policy is not None:
            return ErrorPolicy.from_raw(self.error_policy.to_document())
        return ErrorPolicy.from_raw(self.config.get(ERROR_POLICY_CONFIG_KEY))

    def executor_config(self) -> Dict[str, Any]:
        """Business configuration with the engine's reserved keys removed."""
        return {k: v for k, v in self.config.items() if k not in RESERVED_CONFIG_KEYS}


class Workflow(AflowModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    status: WorkflowStatus = WorkflowStatus.DRAFT
    trigger: Optional[Trigger] = None
    steps: List[Step] = Field(default_factory=list)

    @field_validator("steps")
    @classmethod
    def _unique_orders(cls, steps: List[Step]) -> List[Step]:
        orders = [s.order for s in steps]
        if len(orders) != len(set(orders)):
            raise ValueError("step orders must be unique within a workflow")
        return sorted(steps, key=lambda s: s.order)

    @property
    def cron_expression(self) -> Optional[str]:
        """Schedule expression when the workflow is eligible for scheduling."""
        if self.status is not WorkflowStatus.ACTIVE or self.trigger is None:
            return None
        return self.trigger.cron_expression

    def step_at(self, order: int) -> Optional[Step]:
        return next((s for s in self.steps if s.order == order), None)


class WorkflowExecution(AflowModel):
    """Persisted state of one execution attempt.

    ``current_step_order`` points at the next step to run; ``None`` once the
    execution has completed.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    current_step_order: Optional[int] = 0
    context: Dict[str, Any] = Field(default_factory=dict)
    paused_at: Optional[datetime] = None
    resume_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class NotificationConfig(AflowModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    on_failure: bool = True
    on_pause: bool = False

    def subscribes_to(self, status: ExecutionStatus) -> bool:
        if status is ExecutionStatus.FAILED:
            return self.on_failure
        if status is ExecutionStatus.PAUSED:
            return self.on_pause
        return False


class StepLogEvent(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    RETRIED = "retried"


class ExecutionLogEntry(AflowModel):
    """Append-only record of a step transition."""

    id: Optional[int] = None
    execution_id: str
    step_id: str
    step_order: int
    event_type: StepLogEvent
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Optional[Dict[str, Any]] = None


class WorkflowExecutionResult(AflowModel):
    success: bool
    context: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    paused: bool = False
    execution_id: Optional[str] = None
    resume_at: Optional[datetime] = None


class WorkflowJob(AflowModel):
    """Envelope placed on the job queue to (re)start an execution."""

    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    trigger_payload: Dict[str, Any] = Field(default_factory=dict)
    execution_id: Optional[str] = None
    enqueued_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_json(cls, data: str | bytes) -> "WorkflowJob":
        return cls.model_validate_json(data)


class RepeatableJob(AflowModel):
    """A recurring queue entry registered under a deterministic key."""

    key: str
    pattern: str
    job: WorkflowJob
    next_run_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, data: str | bytes) -> "RepeatableJob":
        return cls.model_validate_json(data)
