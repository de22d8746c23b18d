"""
Application configuration for the risk & drift engine.

Provides environment-aware settings with conservative defaults. Classification
bands, drift thresholds and scoring penalties are all configurable to avoid
hard-coded "magic numbers"; the penalty weights in particular are a policy
choice rather than a correctness requirement.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClassificationConfig(BaseModel):
	"""
	Ratio bands for the status classifier.

	Rationale:
	- ratio is current/threshold (or its inverse for higher-is-better metrics).
	- Band edges are inclusive on the stricter side.
	- trend_epsilon absorbs moment-to-moment noise between cycles.
	"""

	degraded_from: float = Field(0.7, gt=0.0, description="Ratio at which a metric is degraded")
	close_call_from: float = Field(
		0.95, gt=0.0, description="Ratio at which a degraded metric becomes high severity"
	)
	critical_from: float = Field(1.0, gt=0.0, description="Ratio at which a metric is critical")
	trend_epsilon: float = Field(0.01, ge=0.0, description="Absolute change treated as stable")

	@model_validator(mode="after")
	def _check_order(self) -> "ClassificationConfig":
		if not self.degraded_from <= self.close_call_from <= self.critical_from:
			raise ValueError("classification bands must be ordered: degraded <= close_call <= critical")
		return self


class DriftConfig(BaseModel):
	"""
	Drift thresholds, in absolute percent.

	Notes:
	- drifting_percent: feeds the drift count and moderate-drift anomalies.
	- significant_percent: feeds scoring penalties and high-severity anomalies.
	- window_label: default label for the baseline reference window.
	"""

	drifting_percent: float = Field(10.0, ge=0.0)
	significant_percent: float = Field(20.0, ge=0.0)
	window_label: str = Field("7d", min_length=1)

	@model_validator(mode="after")
	def _check_order(self) -> "DriftConfig":
		if self.significant_percent < self.drifting_percent:
			raise ValueError("significant_percent must be >= drifting_percent")
		return self


class AnomalyRulesConfig(BaseModel):
	"""
	Anomaly lifecycle configuration.

	Notes:
	- clear_cycles: consecutive clean cycles before an event auto-resolves.
	- recent_window_hours: window for the "recent anomalies" snapshot count.
	"""

	clear_cycles: int = Field(2, ge=1)
	recent_window_hours: int = Field(24, ge=1)


class ScoringWeights(BaseModel):
	"""
	Penalty weights and risk bands for the composite score.
	"""

	critical_metric: int = Field(15, ge=0)
	high_metric: int = Field(7, ge=0)
	open_anomaly: int = Field(3, ge=0)
	significant_drift: int = Field(2, ge=0)
	low_risk_min: int = Field(80, ge=0, le=100)
	elevated_min: int = Field(60, ge=0, le=100)


class SchedulerConfig(BaseModel):
	"""
	Refresh scheduler configuration.

	Notes:
	- interval_ms: period between automatic evaluations.
	- evaluation_timeout_ms: bound on a single on-demand evaluation.
	- stale_factor: snapshots older than stale_factor * interval are stale.
	"""

	auto_refresh: bool = True
	interval_ms: int = Field(30_000, gt=0)
	evaluation_timeout_ms: int = Field(5_000, gt=0)
	stale_factor: float = Field(2.0, gt=0.0)


class EngineConfig(BaseModel):
	"""
	Risk engine configuration.
	"""

	classification: ClassificationConfig = ClassificationConfig()
	drift: DriftConfig = DriftConfig()
	anomalies: AnomalyRulesConfig = AnomalyRulesConfig()
	scoring: ScoringWeights = ScoringWeights()
	scheduler: SchedulerConfig = SchedulerConfig()


class Config(BaseSettings):
	"""
	Global configuration with environment overrides.
	"""

	model_config = SettingsConfigDict(
		env_prefix="RISKWATCH_", env_nested_delimiter="__", env_file=".env", extra="ignore"
	)

	log_level: str = Field("INFO", description="Default logging level")
	logs_dir: Path = Field(Path("logs"), description="Directory for log files")
	definitions_path: Optional[Path] = Field(None, description="Metric definition registry file")
	engine: EngineConfig = EngineConfig()

	def model_post_init(self, __context: object) -> None:
		self.logs_dir.mkdir(parents=True, exist_ok=True)


config = Config()
