"""
Pydantic models that mirror ``quickqc.yaml``.

The QC policy constants live here so thresholds can be tuned per dataset
without touching code.  Defaults reproduce the historical behaviour: a
diffusion series fails when a fifth of its volumes are corrupted and a
functional run is flagged when its mean framewise displacement exceeds
0.3 mm.
"""

from __future__ import annotations

import re
from typing import List

from pydantic import BaseModel, Field, field_validator, model_validator


class QcPolicy(BaseModel):
    """Thresholds applied by the decision engine and motion analyzer."""

    bad_volume_fraction: float = Field(0.2, gt=0, le=1)
    b0_threshold: float = Field(10.0, ge=0)
    mean_fd_limit: float = Field(0.3, gt=0)
    censor_limits: List[float] = Field(default_factory=lambda: [0.2, 0.3, 0.4, 0.5])
    plot_censor_limit: float = Field(0.3, gt=0)
    censor_prev_tr: bool = False
    translation_weight: float = Field(0.9, ge=0)
    rotation_weight: float = Field(1.0, ge=0)
    min_plot_volumes: int = Field(9, ge=0)
    automask_clfrac: float = Field(0.4, gt=0, lt=1)
    echo_count: int = Field(3, ge=2)
    gsr_decimals: int = Field(4, ge=0)

    @field_validator("censor_limits")
    @classmethod
    def _sorted_limits(cls, v: List[float]) -> List[float]:
        if not v:
            raise ValueError("censor_limits must not be empty")
        if any(lim <= 0 for lim in v):
            raise ValueError("censor_limits must be positive")
        return sorted(set(v))


class DiscoveryConfig(BaseModel):
    """How sessions and reference scans are recognised."""

    session_pattern: str = r"^ses-[A-Za-z0-9]+$"
    exclude_infixes: List[str] = Field(default_factory=lambda: ["sbref"])

    @field_validator("session_pattern")
    @classmethod
    def _compiles(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"invalid session_pattern: {exc}") from exc
        return v


class ToolkitConfig(BaseModel):
    """Execution policy for AFNI / tedana calls."""

    timeout: float | None = Field(1800.0, gt=0)
    retries: int = Field(1, ge=0)


class QcConfig(BaseModel):
    """Root of the configuration document."""

    version: int = 1
    policy: QcPolicy = Field(default_factory=QcPolicy)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    toolkit: ToolkitConfig = Field(default_factory=ToolkitConfig)

    @model_validator(mode="after")
    def _plot_limit_is_evaluated(self):
        """The highlighted censor limit must be one of the tabulated limits."""
        if self.policy.plot_censor_limit not in self.policy.censor_limits:
            raise ValueError(
                "policy.plot_censor_limit must be one of policy.censor_limits"
            )
        return self
