"""Lifecycle scan schemas."""
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field

from batchtrace.models.alert import AlertSeverity


class AlertDraft(BaseModel):
    """A fully composed alert, not yet persisted."""
    tenant_id: UUID
    entity_type: str
    entity_id: UUID
    rule_id: str
    threshold_tier: str
    severity: AlertSeverity
    title: str
    message: Optional[str] = None
    extra_data: Dict[str, Any] = Field(default_factory=dict)


class RuleSummary(BaseModel):
    """Counters for a single rule within one scan."""
    rule_id: str
    entity_type: str
    evaluated: int = 0
    transitioned: int = 0
    notified: int = 0
    errors: List[str] = Field(default_factory=list)


class ScanSummary(BaseModel):
    """Result of one lifecycle scan."""
    as_of: date
    tenant_id: Optional[UUID] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    per_rule: Dict[str, RuleSummary] = Field(default_factory=dict)

    @property
    def total_notified(self) -> int:
        return sum(r.notified for r in self.per_rule.values())

    @property
    def total_transitioned(self) -> int:
        return sum(r.transitioned for r in self.per_rule.values())

    @property
    def has_errors(self) -> bool:
        return any(r.errors for r in self.per_rule.values())
