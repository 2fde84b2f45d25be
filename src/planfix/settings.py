"""Typed engine settings derived from the YAML configuration."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, List

from .tools.diagnostics import DiagnosticCheck

__all__ = ["EngineSettings"]


def _positive_int(section: Mapping[str, Any], key: str, default: int) -> int:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return default
    return value


def _non_negative_float(section: Mapping[str, Any], key: str, default: float) -> float:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return default
    return float(value)


@dataclass(slots=True)
class EngineSettings:
    """Retry caps, delays and collaborators' tuning for one engine instance."""

    model: str = "gpt-5-mini"
    max_plan_parse_retries: int = 3
    max_transient_step_retries: int = 3
    max_correction_attempts: int = 3
    transient_retry_base_delay: float = 10.0
    transient_retry_step_delay: float = 5.0
    stabilize_timeout_ms: int = 5000
    stabilize_poll_ms: int = 100
    stabilize_required_checks: int = 3
    auto_approve_commands: bool = False
    data_dir: str = "data"
    diagnostic_checks: List[DiagnosticCheck] = field(default_factory=list)

    def transient_retry_delay(self, attempt: int) -> float:
        """Seconds to wait before transient retry number ``attempt``."""
        return self.transient_retry_base_delay + attempt * self.transient_retry_step_delay

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "EngineSettings":
        """Build settings from a loaded config mapping, falling back to defaults."""
        defaults = cls()
        models_cfg = config.get("models") or {}
        execution_cfg = config.get("execution") or {}
        diagnostics_cfg = config.get("diagnostics") or {}
        paths_cfg = config.get("paths") or {}
        if not isinstance(models_cfg, Mapping):
            models_cfg = {}
        if not isinstance(execution_cfg, Mapping):
            execution_cfg = {}
        if not isinstance(diagnostics_cfg, Mapping):
            diagnostics_cfg = {}
        if not isinstance(paths_cfg, Mapping):
            paths_cfg = {}

        checks: List[DiagnosticCheck] = []
        for entry in diagnostics_cfg.get("checks") or []:
            check = DiagnosticCheck.from_config(entry)
            if check is not None:
                checks.append(check)

        model = models_cfg.get("default")
        data_dir = paths_cfg.get("data")
        return cls(
            model=str(model).strip() if isinstance(model, str) and model.strip() else defaults.model,
            max_plan_parse_retries=_positive_int(
                execution_cfg, "max_plan_parse_retries", defaults.max_plan_parse_retries
            ),
            max_transient_step_retries=_positive_int(
                execution_cfg, "max_transient_step_retries", defaults.max_transient_step_retries
            ),
            max_correction_attempts=_positive_int(
                execution_cfg, "max_correction_attempts", defaults.max_correction_attempts
            ),
            transient_retry_base_delay=_non_negative_float(
                execution_cfg, "transient_retry_base_delay", defaults.transient_retry_base_delay
            ),
            transient_retry_step_delay=_non_negative_float(
                execution_cfg, "transient_retry_step_delay", defaults.transient_retry_step_delay
            ),
            stabilize_timeout_ms=_positive_int(
                execution_cfg, "stabilize_timeout_ms", defaults.stabilize_timeout_ms
            ),
            stabilize_poll_ms=_positive_int(execution_cfg, "stabilize_poll_ms", defaults.stabilize_poll_ms),
            stabilize_required_checks=_positive_int(
                execution_cfg, "stabilize_required_checks", defaults.stabilize_required_checks
            ),
            auto_approve_commands=bool(execution_cfg.get("auto_approve_commands", False)),
            data_dir=str(data_dir).strip() if isinstance(data_dir, str) and data_dir.strip() else defaults.data_dir,
            diagnostic_checks=checks,
        )
