"""
Batch genealogy and lifecycle-automation engine.

Exposed helpers:
    record_production_output - record an output of a production run
    trace_batch              - forward/backward lineage graph of a batch
    run_lifecycle_scan       - daily expiry / overdue scan
    generate_batch_code      - next unique code for a template
"""

from batchtrace.services.genealogy_service import record_production_output
from batchtrace.services.traceability_service import trace_batch
from batchtrace.services.batch_code_service import generate_batch_code
from batchtrace.jobs.lifecycle_scanner import run_lifecycle_scan

__all__ = [
    "record_production_output",
    "trace_batch",
    "run_lifecycle_scan",
    "generate_batch_code",
]
