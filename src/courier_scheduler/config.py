"""Scheduler configuration."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class SchedulerConfig(BaseModel):
    """Configuration for :class:`~courier_scheduler.scheduling.DeliveryScheduler`.

    Durations are in seconds.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    max_retries: int = Field(default=3, ge=0)
    base_backoff: float = Field(default=300.0, ge=0)
    max_backoff: float | None = Field(default=None, ge=0)
    sweep_interval: float = Field(default=60.0, gt=0)
    admission_weight: int = Field(default=1, ge=1)

    # Used when admission control denies without a retry-after hint.
    admission_retry_delay: float = Field(default=30.0, ge=0)

    max_concurrent_attempts: int = Field(default=16, ge=1)
    shutdown_timeout: float = Field(default=5.0, ge=0)

    @model_validator(mode="after")
    def _check_backoff_cap(self) -> SchedulerConfig:
        if self.max_backoff is not None and self.max_backoff < self.base_backoff:
            raise ValueError("max_backoff must be >= base_backoff")
        return self

    @property
    def base_backoff_delta(self) -> timedelta:
        return timedelta(seconds=self.base_backoff)

    @property
    def sweep_interval_delta(self) -> timedelta:
        return timedelta(seconds=self.sweep_interval)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SchedulerConfig:
        """Build a config from a plain mapping, accepting camelCase keys."""
        return cls.model_validate(dict(data))
