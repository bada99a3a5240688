"""
Configuration Module
====================

Application settings and configuration management using Pydantic.

Settings are built once by the composition root (`repairdesk.main`) and
passed explicitly to every component that needs them.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="repair-case-core", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/repairdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Monitoring ==========
    sla_monitoring_enabled: bool = Field(
        default=True,
        description="Run the periodic SLA sweep"
    )
    sla_check_interval_minutes: int = Field(
        default=15,
        description="Minutes between SLA checks of the same case",
        ge=1
    )
    sla_escalation_enabled: bool = Field(
        default=True,
        description="Fire escalation rules during the sweep"
    )
    sla_penalty_calculation_enabled: bool = Field(
        default=False,
        description="Compute SLA penalty amounts"
    )
    sla_default_case_value: float = Field(
        default=1000.0,
        description="Case value used for penalties when the case carries none",
        ge=0
    )
    sla_at_risk_ratio: float = Field(
        default=0.8,
        description="Elapsed/target ratio above which a case is at risk",
        gt=0,
        le=1
    )
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA configuration YAML file"
    )

    # ========== Technician Assignment ==========
    max_cases_per_technician: int = Field(
        default=10,
        description="Per-technician cap on active cases",
        ge=1
    )
    reassignment_batch_size: int = Field(
        default=3,
        description="Cases proposed for reassignment per overloaded technician",
        ge=1
    )

    # ========== Workflow Integration ==========
    workflow_integration_enabled: bool = Field(
        default=False,
        description="Reconcile cases with the workflow orchestrator"
    )
    workflow_service_url: str = Field(
        default="http://localhost:3003",
        description="Base URL of the workflow orchestrator"
    )
    workflow_retry_attempts: int = Field(
        default=3,
        description="Attempts per orchestrator call",
        ge=1
    )
    workflow_retry_delay_seconds: float = Field(
        default=1.0,
        description="Base delay between orchestrator attempts",
        ge=0
    )
    workflow_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single orchestrator request",
        gt=0
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for notifications"
    )
    slack_channel: str = Field(
        default="#repair-escalations",
        description="Slack channel for SLA notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "testing", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Case priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is more urgent."""
        return PRIORITY_ORDER.index(self) + 1


class CaseStatus(str, Enum):
    """Repair case lifecycle statuses."""
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    WAITING_PARTS = "waiting_parts"
    WAITING_CUSTOMER = "waiting_customer"
    WAITING_APPROVAL = "waiting_approval"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CustomerTier(str, Enum):
    """Customer tier levels."""
    PREMIUM = "premium"
    BUSINESS = "business"
    STANDARD = "standard"


class SLAType(str, Enum):
    """Types of SLA clocks."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class SLAState(str, Enum):
    """SLA compliance states."""
    MET = "met"
    AT_RISK = "at_risk"
    BREACHED = "breached"


class EscalationType(str, Enum):
    """Severity of an escalation rule."""
    WARNING = "warning"
    CRITICAL = "critical"
    BREACH = "breach"


class WorkflowState(str, Enum):
    """Workflow state of a case as seen from the case side."""
    NONE = "none"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ========== Lists for validation ==========

PRIORITY_ORDER = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.URGENT]

TERMINAL_STATUSES = frozenset({CaseStatus.COMPLETED, CaseStatus.CANCELLED})

# Statuses that count towards a technician's workload
ACTIVE_STATUSES = frozenset(s for s in CaseStatus if s not in TERMINAL_STATUSES)

# Active statuses a case can be moved out of during rebalancing
REASSIGNABLE_STATUSES = frozenset({
    CaseStatus.ASSIGNED, CaseStatus.WAITING_PARTS, CaseStatus.WAITING_CUSTOMER
})

DEFAULT_CUSTOMER_TIER = CustomerTier.STANDARD.value
DEFAULT_SERVICE_TYPE = "repair"
