"""Register every model with ``Base.metadata``."""
from batchtrace.models.tenant import Tenant, TenantStatus
from batchtrace.models.reference import StockItem, Supplier, Delivery, DeliveryLine, Customer
from batchtrace.models.batch import (
    StockBatch, BatchMovement, BatchDispatchRecord, ProductSpecification,
    BatchStatus, MovementType, SpecStatus, ShelfLifeUnit,
)
from batchtrace.models.production import (
    ProductionBatch, ProductionBatchInput, ProductionBatchOutput,
    ProductionBatchStatus, OutputType, TERMINAL_PRODUCTION_STATUSES,
)
from batchtrace.models.batch_code_sequence import BatchCodeSequence
from batchtrace.models.compliance import (
    AssetCalibration, NonConformance, CorrectiveAction, Recall, RecallNotification,
    SupplierDocument, CalibrationResult, NonConformanceStatus, RecallStatus,
    RecallType, SupplierDocumentType,
)
from batchtrace.models.alert import (
    ComplianceAlert, AlertSeverity, LifecycleEntityType, build_dedupe_key,
)

__all__ = [
    "Tenant", "TenantStatus",
    "StockItem", "Supplier", "Delivery", "DeliveryLine", "Customer",
    "StockBatch", "BatchMovement", "BatchDispatchRecord", "ProductSpecification",
    "BatchStatus", "MovementType", "SpecStatus", "ShelfLifeUnit",
    "ProductionBatch", "ProductionBatchInput", "ProductionBatchOutput",
    "ProductionBatchStatus", "OutputType", "TERMINAL_PRODUCTION_STATUSES",
    "BatchCodeSequence",
    "AssetCalibration", "NonConformance", "CorrectiveAction", "Recall", "RecallNotification",
    "SupplierDocument", "CalibrationResult", "NonConformanceStatus", "RecallStatus",
    "RecallType", "SupplierDocumentType",
    "ComplianceAlert", "AlertSeverity", "LifecycleEntityType", "build_dedupe_key",
]
