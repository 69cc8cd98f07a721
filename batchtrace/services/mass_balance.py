"""
Mass-balance reconciliation over trace graphs.

totalInput is the seed batch's received quantity. totalOutput counts each
downstream output batch once:
- the sum of its dispatches when it has been dispatched
- nothing when it was consumed onward by another run (the outputs of that
  run stand in for it)
- otherwise its own received quantity
Dispatches taken directly off the seed batch count as output too. Waste
never materializes a batch, so it never reaches the graph.

Backward traces seeded at a produced batch reconcile the run that made it
instead: what the run consumed against everything it produced.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence, Tuple

from batchtrace.schemas.traceability import (
    MassBalance, TraceGraph, TraceNode, TraceNodeType, TraceRelation
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
PERCENT_PLACES = Decimal("0.01")


def _qty(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _same_unit(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return True
    return a.strip().lower() == b.strip().lower()


def _unit_matches(node: TraceNode, unit: Optional[str]) -> bool:
    return _same_unit(node.unit, unit)


def _dispatched(graph: TraceGraph, node_id: str) -> Optional[Decimal]:
    links = graph.links_from(node_id, TraceRelation.DISPATCHED)
    if not links:
        return None
    return sum((_qty(link.quantity) for link in links), ZERO)


def reconcile(graph: TraceGraph, unit: Optional[str] = None) -> MassBalance:
    """
    Reconcile the seed batch's input against its reachable output.

    Output batches measured in a different unit than ``unit`` cannot be
    summed and are left out (logged at WARNING).
    """
    seed = graph.node(graph.seed_node_id)
    if seed is None:
        raise ValueError(f"Seed node {graph.seed_node_id} missing from graph")
    unit = unit or seed.unit

    total_input = _qty(seed.quantity)
    total_output = _dispatched(graph, seed.id) or ZERO

    for node in graph.nodes_of_type(TraceNodeType.FINISHED_PRODUCT_BATCH):
        if node.id == seed.id:
            continue
        if not _unit_matches(node, unit):
            logger.warning(
                f"Mass balance for {seed.label}: skipping {node.label} measured in "
                f"'{node.unit}', expected '{unit}'"
            )
            continue

        dispatched = _dispatched(graph, node.id)
        if dispatched is not None:
            total_output += dispatched
        elif graph.links_from(node.id, TraceRelation.INPUT):
            continue
        else:
            total_output += _qty(node.quantity)

    return _balance(total_input, total_output, unit)


def reconcile_run(
    graph: TraceGraph,
    production_node_id: str,
    outputs: Sequence[Tuple[Decimal, Optional[str]]],
    unit: Optional[str] = None,
) -> MassBalance:
    """
    Reconcile one production run seen from a backward trace.

    totalInput is every Input link into the run; totalOutput is every
    non-waste batch the run produced, given as (quantity, unit) pairs since
    the seed's sibling outputs are not part of a backward graph. The
    variance is the run's yield loss, recorded waste included.
    """
    production = graph.node(production_node_id)
    if production is None:
        raise ValueError(f"Production node {production_node_id} missing from graph")

    total_input = ZERO
    for link in graph.links:
        if link.target != production_node_id or link.label != TraceRelation.INPUT:
            continue
        source = graph.node(link.source)
        if source is not None and not _unit_matches(source, unit):
            logger.warning(
                f"Mass balance for {production.label}: skipping input {source.label} "
                f"measured in '{source.unit}', expected '{unit}'"
            )
            continue
        total_input += _qty(link.quantity)

    total_output = ZERO
    for quantity, output_unit in outputs:
        if not _same_unit(output_unit, unit):
            logger.warning(
                f"Mass balance for {production.label}: skipping output of {quantity} "
                f"measured in '{output_unit}', expected '{unit}'"
            )
            continue
        total_output += _qty(quantity)

    return _balance(total_input, total_output, unit)


def _balance(total_input: Decimal, total_output: Decimal, unit: Optional[str]) -> MassBalance:
    variance = total_input - total_output
    if total_input == ZERO:
        variance_percent = ZERO
    else:
        variance_percent = (variance / total_input * 100).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)

    return MassBalance(
        total_input=total_input,
        total_output=total_output,
        variance=variance,
        variance_percent=variance_percent,
        unit=unit,
    )
