from batchtrace.services.batch_code_service import BatchCodeService, CodeScope
from batchtrace.services.shelf_life_service import ShelfLifeService
from batchtrace.services.allergen_service import AllergenService
from batchtrace.services.genealogy_service import GenealogyService
from batchtrace.services.traceability_service import TraceabilityService
from batchtrace.services.notification_service import AlertService, Notifier, LoggingNotifier

__all__ = [
    "BatchCodeService",
    "CodeScope",
    "ShelfLifeService",
    "AllergenService",
    "GenealogyService",
    "TraceabilityService",
    "AlertService",
    "Notifier",
    "LoggingNotifier",
]
