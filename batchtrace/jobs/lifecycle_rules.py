"""
Lifecycle Rules.

The fixed set of time-threshold checks run by the lifecycle scan:

| rule_id                      | entity              | tier            | severity          |
|------------------------------|---------------------|-----------------|-------------------|
| auto_expire                  | stock_batch         | expired         | critical          |
| use_by_approaching           | stock_batch         | days_left=<n>   | critical / warning|
| best_before_approaching      | stock_batch         | days_left=<n>   | info              |
| calibration_overdue          | calibration         | due=<date>      | warning           |
| corrective_action_overdue    | corrective_action   | due=<date>      | warning           |
| recall_notification_overdue  | recall_notification | overdue         | critical          |
| supplier_document_expiring   | supplier_document   | expiry=<date>   | info              |

Each rule is a static descriptor: a candidate query, an evaluator that
turns one candidate into zero or more alert drafts, and (auto_expire
only) a state transition. The scanner runs them all through one executor.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, List, Optional, Sequence
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from sqlalchemy import select, update, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from batchtrace.config import settings
from batchtrace.models.alert import AlertSeverity, LifecycleEntityType
from batchtrace.models.batch import StockBatch, BatchMovement, BatchStatus, MovementType
from batchtrace.models.compliance import (
    AssetCalibration, NonConformance, NonConformanceStatus,
    Recall, RecallNotification, RecallStatus, SupplierDocument,
)
from batchtrace.schemas.lifecycle import AlertDraft


@dataclass
class ScanContext:
    """Inputs shared by every rule in one scan."""
    as_of: date
    tenant_id: Optional[UUID] = None
    use_by_warning_days: int = field(default_factory=lambda: settings.USE_BY_WARNING_DAYS)
    use_by_critical_days: int = field(default_factory=lambda: settings.USE_BY_CRITICAL_DAYS)
    best_before_warning_days: int = field(default_factory=lambda: settings.BEST_BEFORE_WARNING_DAYS)
    supplier_document_warning_days: int = field(
        default_factory=lambda: settings.SUPPLIER_DOCUMENT_WARNING_DAYS
    )
    recall_grace_days: int = field(default_factory=lambda: settings.RECALL_NOTIFICATION_GRACE_DAYS)
    recall_working_days: bool = field(default_factory=lambda: settings.RECALL_OVERDUE_WORKING_DAYS)
    timezone: str = field(default_factory=lambda: settings.APP_TIMEZONE)

    def scoped(self, query, model):
        if self.tenant_id is not None:
            query = query.where(model.tenant_id == self.tenant_id)
        return query


CandidateQuery = Callable[[AsyncSession, ScanContext], Awaitable[Sequence[Any]]]
Evaluator = Callable[[Any, ScanContext], List[AlertDraft]]
Transition = Callable[[AsyncSession, Any, ScanContext], Awaitable[bool]]


@dataclass(frozen=True)
class LifecycleRule:
    rule_id: str
    entity_type: LifecycleEntityType
    candidates: CandidateQuery
    evaluate: Evaluator
    transition: Optional[Transition] = None


def subtract_days(day: date, days: int, working_days: bool = False) -> date:
    """
    Step back ``days`` days from ``day``.

    With ``working_days`` Saturdays and Sundays are not counted.
    """
    if not working_days:
        return day - timedelta(days=days)
    current = day
    remaining = days
    while remaining > 0:
        current -= timedelta(days=1)
        if current.weekday() < 5:
            remaining -= 1
    return current


def _local_date(value: datetime, tz_name: str) -> date:
    if value.tzinfo is not None:
        value = value.astimezone(ZoneInfo(tz_name))
    return value.date()


def _draft(entity, ctx: ScanContext, rule_id: str, entity_type: LifecycleEntityType,
           tier: str, severity: AlertSeverity, title: str, message: str, **extra) -> AlertDraft:
    return AlertDraft(
        tenant_id=entity.tenant_id,
        entity_type=entity_type.value,
        entity_id=entity.id,
        rule_id=rule_id,
        threshold_tier=tier,
        severity=severity,
        title=title,
        message=message,
        extra_data={"as_of": ctx.as_of.isoformat(), **extra},
    )


# ============================================================================
# STOCK BATCHES
# ============================================================================

def _active_batches(ctx: ScanContext):
    query = select(StockBatch).where(
        StockBatch.status == BatchStatus.ACTIVE.value,
        StockBatch.quantity_remaining > 0,
    )
    return ctx.scoped(query, StockBatch)


async def _expired_batches(db: AsyncSession, ctx: ScanContext) -> Sequence[StockBatch]:
    result = await db.execute(
        _active_batches(ctx)
        .where(StockBatch.use_by_date < ctx.as_of)
        .order_by(StockBatch.use_by_date)
    )
    return result.scalars().all()


async def _expire_batch(db: AsyncSession, batch: StockBatch, ctx: ScanContext) -> bool:
    # Conditional on the stored status: an overlapping scan may already have expired it
    result = await db.execute(
        update(StockBatch)
        .where(
            and_(
                StockBatch.id == batch.id,
                StockBatch.status == BatchStatus.ACTIVE.value,
            )
        )
        .values(status=BatchStatus.EXPIRED.value)
    )
    if result.rowcount != 1:
        return False
    db.add(BatchMovement(
        id=uuid4(),
        tenant_id=batch.tenant_id,
        batch_id=batch.id,
        movement_type=MovementType.ADJUSTMENT.value,
        quantity=0,
        reference_type="lifecycle_scan",
        notes=f"Auto-expired: use-by date {batch.use_by_date.isoformat()} passed",
    ))
    await db.flush()
    return True


def _evaluate_expired(batch: StockBatch, ctx: ScanContext) -> List[AlertDraft]:
    return [_draft(
        batch, ctx, "auto_expire", LifecycleEntityType.STOCK_BATCH,
        tier="expired",
        severity=AlertSeverity.CRITICAL,
        title=f"Batch {batch.batch_code} expired",
        message=(
            f"Batch {batch.batch_code} passed its use-by date {batch.use_by_date.isoformat()} "
            f"with {batch.quantity_remaining} {batch.unit} remaining and has been marked expired"
        ),
        batch_code=batch.batch_code,
        use_by_date=batch.use_by_date.isoformat(),
    )]


async def _use_by_approaching(db: AsyncSession, ctx: ScanContext) -> Sequence[StockBatch]:
    horizon = ctx.as_of + timedelta(days=ctx.use_by_warning_days)
    result = await db.execute(
        _active_batches(ctx)
        .where(StockBatch.use_by_date >= ctx.as_of, StockBatch.use_by_date <= horizon)
        .order_by(StockBatch.use_by_date)
    )
    return result.scalars().all()


def _evaluate_use_by(batch: StockBatch, ctx: ScanContext) -> List[AlertDraft]:
    days_left = (batch.use_by_date - ctx.as_of).days
    severity = AlertSeverity.CRITICAL if days_left <= ctx.use_by_critical_days else AlertSeverity.WARNING
    return [_draft(
        batch, ctx, "use_by_approaching", LifecycleEntityType.STOCK_BATCH,
        tier=f"days_left={days_left}",
        severity=severity,
        title=f"Batch {batch.batch_code} use-by in {days_left} day(s)",
        message=(
            f"Batch {batch.batch_code} reaches its use-by date {batch.use_by_date.isoformat()} "
            f"with {batch.quantity_remaining} {batch.unit} remaining"
        ),
        batch_code=batch.batch_code,
        days_left=days_left,
    )]


async def _best_before_approaching(db: AsyncSession, ctx: ScanContext) -> Sequence[StockBatch]:
    horizon = ctx.as_of + timedelta(days=ctx.best_before_warning_days)
    result = await db.execute(
        _active_batches(ctx)
        .where(StockBatch.best_before_date >= ctx.as_of, StockBatch.best_before_date <= horizon)
        .order_by(StockBatch.best_before_date)
    )
    return result.scalars().all()


def _evaluate_best_before(batch: StockBatch, ctx: ScanContext) -> List[AlertDraft]:
    days_left = (batch.best_before_date - ctx.as_of).days
    return [_draft(
        batch, ctx, "best_before_approaching", LifecycleEntityType.STOCK_BATCH,
        tier=f"days_left={days_left}",
        severity=AlertSeverity.INFO,
        title=f"Batch {batch.batch_code} best-before in {days_left} day(s)",
        message=f"Batch {batch.batch_code} is best before {batch.best_before_date.isoformat()}",
        batch_code=batch.batch_code,
        days_left=days_left,
    )]


# ============================================================================
# CALIBRATIONS
# ============================================================================

async def _overdue_calibrations(db: AsyncSession, ctx: ScanContext) -> Sequence[AssetCalibration]:
    latest = ctx.scoped(
        select(
            AssetCalibration.tenant_id,
            AssetCalibration.asset_id,
            func.max(AssetCalibration.next_calibration_due).label("max_due"),
        ).where(AssetCalibration.next_calibration_due.is_not(None)),
        AssetCalibration,
    ).group_by(AssetCalibration.tenant_id, AssetCalibration.asset_id).subquery()

    result = await db.execute(
        select(AssetCalibration)
        .join(latest, and_(
            AssetCalibration.tenant_id == latest.c.tenant_id,
            AssetCalibration.asset_id == latest.c.asset_id,
            AssetCalibration.next_calibration_due == latest.c.max_due,
        ))
        .where(latest.c.max_due < ctx.as_of)
        .order_by(AssetCalibration.next_calibration_due, AssetCalibration.created_at.desc())
    )

    # Two records can share the latest due date; keep one per asset
    seen = set()
    candidates = []
    for calibration in result.scalars().all():
        key = (calibration.tenant_id, calibration.asset_id)
        if key not in seen:
            seen.add(key)
            candidates.append(calibration)
    return candidates


def _evaluate_calibration(calibration: AssetCalibration, ctx: ScanContext) -> List[AlertDraft]:
    due = calibration.next_calibration_due
    name = calibration.asset_name or str(calibration.asset_id)
    return [_draft(
        calibration, ctx, "calibration_overdue", LifecycleEntityType.CALIBRATION,
        tier=f"due={due.isoformat()}",
        severity=AlertSeverity.WARNING,
        title=f"Calibration overdue: {name}",
        message=f"{name} was due for calibration on {due.isoformat()}",
        asset_id=str(calibration.asset_id),
    )]


# ============================================================================
# CORRECTIVE ACTIONS
# ============================================================================

async def _overdue_corrective_actions(db: AsyncSession, ctx: ScanContext) -> Sequence[NonConformance]:
    query = select(NonConformance).where(
        NonConformance.corrective_action_due < ctx.as_of,
        NonConformance.status.not_in([
            NonConformanceStatus.CLOSED.value,
            NonConformanceStatus.VERIFICATION.value,
        ]),
    )
    result = await db.execute(
        ctx.scoped(query, NonConformance).order_by(NonConformance.corrective_action_due)
    )
    return result.scalars().all()


def _evaluate_corrective_action(nc: NonConformance, ctx: ScanContext) -> List[AlertDraft]:
    due = nc.corrective_action_due
    return [_draft(
        nc, ctx, "corrective_action_overdue", LifecycleEntityType.CORRECTIVE_ACTION,
        tier=f"due={due.isoformat()}",
        severity=AlertSeverity.WARNING,
        title=f"Corrective action overdue: {nc.nc_code}",
        message=f"{nc.nc_code} ({nc.title}) corrective action was due {due.isoformat()}",
        nc_code=nc.nc_code,
        status=nc.status,
    )]


# ============================================================================
# RECALL NOTIFICATIONS
# ============================================================================

async def _pending_recall_notifications(db: AsyncSession, ctx: ScanContext):
    query = (
        select(RecallNotification, Recall)
        .join(Recall, Recall.id == RecallNotification.recall_id)
        .where(
            Recall.status == RecallStatus.ACTIVE.value,
            RecallNotification.notified_at.is_(None),
        )
    )
    result = await db.execute(
        ctx.scoped(query, RecallNotification).order_by(Recall.initiated_at)
    )
    return result.all()


def _evaluate_recall_notification(row, ctx: ScanContext) -> List[AlertDraft]:
    notification, recall = row
    cutoff = subtract_days(ctx.as_of, ctx.recall_grace_days, ctx.recall_working_days)
    initiated = _local_date(recall.initiated_at, ctx.timezone)
    if initiated >= cutoff:
        return []
    return [_draft(
        notification, ctx, "recall_notification_overdue", LifecycleEntityType.RECALL_NOTIFICATION,
        tier="overdue",
        severity=AlertSeverity.CRITICAL,
        title=f"Recall {recall.recall_code}: {notification.customer_name} not notified",
        message=(
            f"Recall {recall.recall_code} was initiated on {initiated.isoformat()} and "
            f"{notification.customer_name} has still not been notified"
        ),
        recall_code=recall.recall_code,
        initiated_on=initiated.isoformat(),
    )]


# ============================================================================
# SUPPLIER DOCUMENTS
# ============================================================================

async def _expiring_supplier_documents(db: AsyncSession, ctx: ScanContext) -> Sequence[SupplierDocument]:
    horizon = ctx.as_of + timedelta(days=ctx.supplier_document_warning_days)
    query = select(SupplierDocument).where(
        SupplierDocument.is_archived == False,
        SupplierDocument.expiry_date >= ctx.as_of,
        SupplierDocument.expiry_date <= horizon,
    )
    result = await db.execute(
        ctx.scoped(query, SupplierDocument).order_by(SupplierDocument.expiry_date)
    )
    return result.scalars().all()


def _evaluate_supplier_document(document: SupplierDocument, ctx: ScanContext) -> List[AlertDraft]:
    expiry = document.expiry_date
    return [_draft(
        document, ctx, "supplier_document_expiring", LifecycleEntityType.SUPPLIER_DOCUMENT,
        tier=f"expiry={expiry.isoformat()}",
        severity=AlertSeverity.INFO,
        title=f"Supplier document expiring: {document.name}",
        message=f"{document.name} expires on {expiry.isoformat()}",
        supplier_id=str(document.supplier_id),
        document_type=document.document_type,
    )]


LIFECYCLE_RULES: List[LifecycleRule] = [
    LifecycleRule(
        rule_id="auto_expire",
        entity_type=LifecycleEntityType.STOCK_BATCH,
        candidates=_expired_batches,
        evaluate=_evaluate_expired,
        transition=_expire_batch,
    ),
    LifecycleRule(
        rule_id="use_by_approaching",
        entity_type=LifecycleEntityType.STOCK_BATCH,
        candidates=_use_by_approaching,
        evaluate=_evaluate_use_by,
    ),
    LifecycleRule(
        rule_id="best_before_approaching",
        entity_type=LifecycleEntityType.STOCK_BATCH,
        candidates=_best_before_approaching,
        evaluate=_evaluate_best_before,
    ),
    LifecycleRule(
        rule_id="calibration_overdue",
        entity_type=LifecycleEntityType.CALIBRATION,
        candidates=_overdue_calibrations,
        evaluate=_evaluate_calibration,
    ),
    LifecycleRule(
        rule_id="corrective_action_overdue",
        entity_type=LifecycleEntityType.CORRECTIVE_ACTION,
        candidates=_overdue_corrective_actions,
        evaluate=_evaluate_corrective_action,
    ),
    LifecycleRule(
        rule_id="recall_notification_overdue",
        entity_type=LifecycleEntityType.RECALL_NOTIFICATION,
        candidates=_pending_recall_notifications,
        evaluate=_evaluate_recall_notification,
    ),
    LifecycleRule(
        rule_id="supplier_document_expiring",
        entity_type=LifecycleEntityType.SUPPLIER_DOCUMENT,
        candidates=_expiring_supplier_documents,
        evaluate=_evaluate_supplier_document,
    ),
]


def get_rule(rule_id: str) -> LifecycleRule:
    for rule in LIFECYCLE_RULES:
        if rule.rule_id == rule_id:
            return rule
    raise KeyError(f"Unknown lifecycle rule: {rule_id}")
