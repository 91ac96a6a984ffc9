"""
Configuration objects for orderflow components.

All configuration is expressed as frozen dataclasses validated in
``__post_init__``. ``OrderflowSettings.from_env`` builds a complete set
from environment variables for deployments that configure through the
process environment.

Example:
    >>> from orderflow.config import OrderflowSettings
    >>> settings = OrderflowSettings.from_env()
    >>> settings.workflow.activity_timeout
    30.0
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from orderflow.retry import RetryConfig


class DuplicateMode(str, Enum):
    """
    How a duplicate command is handled while the original is still in flight.

    BLOCK waits for the original to finish and returns its outcome.
    FAIL_FAST raises RequestInProgressError immediately.
    """

    BLOCK = "block"
    FAIL_FAST = "fail_fast"


@dataclass(frozen=True)
class IdempotencyConfig:
    """
    Configuration for the idempotency guard.

    Attributes:
        mode: Behavior for in-flight duplicates
        wait_timeout: Maximum seconds a BLOCK duplicate waits for the original
        poll_interval: Seconds between polls while waiting
        retention: Age after which completed entries may be pruned
        claim_lease: Age after which an unfinished claim is taken over by the
            next caller; it must exceed the longest command
    """

    mode: DuplicateMode = DuplicateMode.BLOCK
    wait_timeout: float = 10.0
    poll_interval: float = 0.05
    retention: timedelta = timedelta(days=7)
    claim_lease: timedelta = timedelta(minutes=5)

    def __post_init__(self) -> None:
        if self.wait_timeout <= 0:
            raise ValueError(f"wait_timeout must be positive, got {self.wait_timeout}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.poll_interval > self.wait_timeout:
            raise ValueError(
                f"poll_interval ({self.poll_interval}) must be <= wait_timeout ({self.wait_timeout})"
            )
        if self.retention <= timedelta(0):
            raise ValueError(f"retention must be positive, got {self.retention}")
        if self.claim_lease <= timedelta(0):
            raise ValueError(f"claim_lease must be positive, got {self.claim_lease}")


@dataclass(frozen=True)
class WorkflowConfig:
    """
    Configuration for the order orchestration workflow.

    Attributes:
        activity_timeout: Default deadline in seconds for a single activity call
        step_timeouts: Per-step overrides of activity_timeout
        retry: Backoff for forward activity calls
        compensation_retry: Backoff for compensating calls
        conflict_retry: Backoff for order writes that hit a version conflict
        max_concurrency: Maximum number of workflows running at once
    """

    activity_timeout: float = 30.0
    step_timeouts: Mapping[str, float] = field(default_factory=dict)
    retry: RetryConfig = field(default_factory=RetryConfig)
    compensation_retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(max_retries=5, initial_delay=1.0, max_delay=60.0)
    )
    conflict_retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(max_retries=5, initial_delay=0.01, max_delay=0.5)
    )
    max_concurrency: int = 10

    def __post_init__(self) -> None:
        if self.activity_timeout <= 0:
            raise ValueError(f"activity_timeout must be positive, got {self.activity_timeout}")
        for step, timeout in self.step_timeouts.items():
            if timeout <= 0:
                raise ValueError(f"timeout for step '{step}' must be positive, got {timeout}")
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")

    def timeout_for(self, step: str) -> float:
        """Get the activity deadline for a step."""
        return self.step_timeouts.get(step, self.activity_timeout)


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class OrderflowSettings:
    """
    Top-level settings bundle.

    Attributes:
        database_url: Connection string for the SQL backend (None for in-memory)
        enable_tracing: Whether components create OpenTelemetry tracers
        workflow: Workflow engine configuration
        idempotency: Idempotency guard configuration
    """

    database_url: str | None = None
    enable_tracing: bool = True
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    idempotency: IdempotencyConfig = field(default_factory=IdempotencyConfig)

    @classmethod
    def from_env(
        cls,
        prefix: str = "ORDERFLOW_",
        environ: Mapping[str, str] | None = None,
    ) -> OrderflowSettings:
        """
        Build settings from environment variables.

        Recognized variables (shown with the default prefix):
            ORDERFLOW_DATABASE_URL, ORDERFLOW_ENABLE_TRACING,
            ORDERFLOW_ACTIVITY_TIMEOUT, ORDERFLOW_MAX_CONCURRENCY,
            ORDERFLOW_RETRY_MAX_RETRIES, ORDERFLOW_RETRY_INITIAL_DELAY,
            ORDERFLOW_RETRY_MAX_DELAY, ORDERFLOW_COMPENSATION_MAX_RETRIES,
            ORDERFLOW_IDEMPOTENCY_MODE, ORDERFLOW_IDEMPOTENCY_WAIT_TIMEOUT,
            ORDERFLOW_IDEMPOTENCY_RETENTION_HOURS,
            ORDERFLOW_IDEMPOTENCY_CLAIM_LEASE (seconds)

        Args:
            prefix: Prefix applied to every variable name
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            ValueError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ

        def name(key: str) -> str:
            return f"{prefix}{key}"

        default_retry = RetryConfig()
        retry = RetryConfig(
            max_retries=_env_int(env, name("RETRY_MAX_RETRIES"), default_retry.max_retries),
            initial_delay=_env_float(env, name("RETRY_INITIAL_DELAY"), default_retry.initial_delay),
            max_delay=_env_float(env, name("RETRY_MAX_DELAY"), default_retry.max_delay),
        )
        default_workflow = WorkflowConfig()
        compensation_retry = RetryConfig(
            max_retries=_env_int(
                env,
                name("COMPENSATION_MAX_RETRIES"),
                default_workflow.compensation_retry.max_retries,
            ),
            initial_delay=default_workflow.compensation_retry.initial_delay,
            max_delay=default_workflow.compensation_retry.max_delay,
        )
        workflow = WorkflowConfig(
            activity_timeout=_env_float(
                env, name("ACTIVITY_TIMEOUT"), default_workflow.activity_timeout
            ),
            retry=retry,
            compensation_retry=compensation_retry,
            max_concurrency=_env_int(
                env, name("MAX_CONCURRENCY"), default_workflow.max_concurrency
            ),
        )

        default_idempotency = IdempotencyConfig()
        mode_raw = env.get(name("IDEMPOTENCY_MODE"))
        try:
            mode = DuplicateMode(mode_raw.lower()) if mode_raw else default_idempotency.mode
        except ValueError as e:
            raise ValueError(
                f"{name('IDEMPOTENCY_MODE')} must be one of "
                f"{[m.value for m in DuplicateMode]}, got {mode_raw!r}"
            ) from e
        retention_hours = _env_float(
            env,
            name("IDEMPOTENCY_RETENTION_HOURS"),
            default_idempotency.retention.total_seconds() / 3600,
        )
        idempotency = IdempotencyConfig(
            mode=mode,
            wait_timeout=_env_float(
                env, name("IDEMPOTENCY_WAIT_TIMEOUT"), default_idempotency.wait_timeout
            ),
            retention=timedelta(hours=retention_hours),
            claim_lease=timedelta(
                seconds=_env_float(
                    env,
                    name("IDEMPOTENCY_CLAIM_LEASE"),
                    default_idempotency.claim_lease.total_seconds(),
                )
            ),
        )

        tracing_raw = env.get(name("ENABLE_TRACING"), "true")
        enable_tracing = tracing_raw.strip().lower() not in ("0", "false", "no", "off")

        return cls(
            database_url=env.get(name("DATABASE_URL")) or None,
            enable_tracing=enable_tracing,
            workflow=workflow,
            idempotency=idempotency,
        )


__all__ = [
    "DuplicateMode",
    "IdempotencyConfig",
    "WorkflowConfig",
    "OrderflowSettings",
]
