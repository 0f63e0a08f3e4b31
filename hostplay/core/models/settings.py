"""
Engine settings: run-wide knobs loaded from hostplay.yml.

Everything has a default, so a missing settings file is not an error.
CLI flags override these values.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ItemFailurePolicy = Literal["abort", "continue"]


class EngineSettings(BaseModel):
    """Run-wide engine configuration."""

    fanout: int = Field(default=5, ge=1)        # max hosts in parallel
    task_timeout: float | None = Field(default=None, gt=0)
    item_failure_policy: ItemFailurePolicy = "abort"
    audit: bool = False
    audit_path: str | None = None
    log_level: str | None = None
