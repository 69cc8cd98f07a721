"""
Print the lineage graph of a batch.

Usage:
    python scripts/trace_batch.py <tenant_id> <batch_code> [--backward]
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from uuid import UUID

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from batchtrace.config import settings
from batchtrace.database import async_session_factory
from batchtrace.models.batch import StockBatch
from batchtrace.schemas.traceability import TraceDirection
from batchtrace.services.traceability_service import TraceabilityService


async def main(tenant_id, batch_code, direction):
    async with async_session_factory() as session:
        result = await session.execute(
            select(StockBatch).where(
                StockBatch.tenant_id == tenant_id,
                StockBatch.batch_code == batch_code,
            )
        )
        batch = result.scalar_one_or_none()
        if batch is None:
            print(f"ERROR: Batch {batch_code} not found")
            return 1

        trace = await TraceabilityService(session, tenant_id).trace(batch.id, direction)

    labels = {node.id: node.label for node in trace.nodes}
    print(f"\n{direction.value.upper()} trace of {batch_code}")
    print("-" * 72)
    for node in trace.nodes:
        quantity = f"{node.quantity} {node.unit or ''}".strip() if node.quantity is not None else ""
        print(f"  [{node.type.value:<22}] {node.label:<28} {quantity}")
    print("\nLinks:")
    for link in trace.links:
        quantity = f" ({link.quantity})" if link.quantity is not None else ""
        print(f"  {labels.get(link.source, link.source)} --{link.label.value}--> "
              f"{labels.get(link.target, link.target)}{quantity}")

    if trace.mass_balance:
        mb = trace.mass_balance
        print("\nMass balance:")
        print(f"  Input:    {mb.total_input} {mb.unit or ''}")
        print(f"  Output:   {mb.total_output} {mb.unit or ''}")
        print(f"  Variance: {mb.variance} ({mb.variance_percent}%)")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Trace a batch forward or backward")
    parser.add_argument("tenant_id", type=UUID)
    parser.add_argument("batch_code")
    parser.add_argument("--backward", action="store_true", help="Trace towards suppliers")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL)
    direction = TraceDirection.BACKWARD if args.backward else TraceDirection.FORWARD
    sys.exit(asyncio.run(main(args.tenant_id, args.batch_code, direction)))
