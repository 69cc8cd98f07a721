"""
Traceability Schemas.

Node/link graph returned by forward and backward traces, plus the
mass-balance reconciliation attached to forward traces.
"""
import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field

from batchtrace.schemas.production import StockBatchResponse


class TraceDirection(str, Enum):
    FORWARD = "forward"    # supplier -> customer
    BACKWARD = "backward"  # customer -> supplier


class TraceNodeType(str, Enum):
    SUPPLIER = "supplier"
    RAW_MATERIAL_BATCH = "raw_material_batch"
    PRODUCTION_BATCH = "production_batch"
    FINISHED_PRODUCT_BATCH = "finished_product_batch"
    CUSTOMER = "customer"


class TraceRelation(str, Enum):
    SUPPLIED = "Supplied"
    INPUT = "Input"
    OUTPUT = "Output"
    DISPATCHED = "Dispatched"


class TraceNode(BaseModel):
    """A supplier, batch, production run or customer in the lineage graph."""
    id: str
    type: TraceNodeType
    label: str
    sublabel: Optional[str] = None
    date: Optional[dt.date] = None
    quantity: Optional[Decimal] = None
    unit: Optional[str] = None
    allergens: Optional[List[str]] = None
    status: Optional[str] = None
    output_type: Optional[str] = None  # finished_product / byproduct on production-origin batches


class TraceLink(BaseModel):
    """Directed edge, always pointing in material-flow direction."""
    source: str
    target: str
    label: TraceRelation
    quantity: Optional[Decimal] = None


class MassBalance(BaseModel):
    total_input: Decimal
    total_output: Decimal
    variance: Decimal
    variance_percent: Decimal
    unit: Optional[str] = None


class TraceGraph(BaseModel):
    """Nodes and links of a trace, in discovery order."""
    seed_node_id: str
    nodes: List[TraceNode] = Field(default_factory=list)
    links: List[TraceLink] = Field(default_factory=list)

    def node(self, node_id: str) -> Optional[TraceNode]:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def nodes_of_type(self, node_type: TraceNodeType) -> List[TraceNode]:
        return [n for n in self.nodes if n.type == node_type]

    def links_from(self, node_id: str, label: Optional[TraceRelation] = None) -> List[TraceLink]:
        return [
            link for link in self.links
            if link.source == node_id and (label is None or link.label == label)
        ]


class TraceResult(BaseModel):
    """Full trace response."""
    direction: TraceDirection
    batch: StockBatchResponse
    seed_batch_id: UUID
    nodes: List[TraceNode]
    links: List[TraceLink]
    mass_balance: Optional[MassBalance] = None
