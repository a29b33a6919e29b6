"""
Production batch Pydantic schemas for API request/response validation.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from orderdesk.database.models.production import BatchStatus
from orderdesk.services.production.allocation import BatchPlan


class BatchPlanRequest(BaseModel):
    """One batch plan as submitted by a client."""

    line_id: UUID = Field(..., description="Order line to produce")
    quantity: int = Field(..., description="Bottles to plan")
    planned_start: Optional[datetime] = Field(None, description="Planned start time")

    def to_plan(self) -> BatchPlan:
        return BatchPlan(
            line_id=self.line_id,
            quantity=self.quantity,
            planned_start=self.planned_start,
        )


class BatchPlansRequest(BaseModel):
    """Set of batch plans for one order."""

    plans: list[BatchPlanRequest] = Field(default_factory=list)

    def to_plans(self) -> list[BatchPlan]:
        return [plan.to_plan() for plan in self.plans]


class PlanIssueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_id: Optional[UUID] = None
    message: str


class PlanValidationResponse(BaseModel):
    """Batch plan validation outcome."""

    model_config = ConfigDict(from_attributes=True)

    valid: bool
    issues: list[PlanIssueResponse]


class QuickPlanResponse(BaseModel):
    plans: list[BatchPlanRequest]


class BatchResponse(BaseModel):
    """Production batch."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    so_id: UUID
    human_uid: str
    status: BatchStatus
    priority_index: int
    planned_start: Optional[datetime] = None
    qty_bottle_planned: int
    qty_bottle_good: int
    qty_bottle_scrap: int
    notes: Optional[str] = None


class SplitBatchRequest(BaseModel):
    quantities: list[int] = Field(
        ...,
        min_length=2,
        description="Planned quantities of the new batches",
    )


class MergeBatchesRequest(BaseModel):
    batch_ids: list[UUID] = Field(
        ...,
        min_length=1,
        description="Batches to fold into the target",
    )


class ScheduleBatchRequest(BaseModel):
    planned_start: Optional[datetime] = Field(None, description="None clears the schedule")
    priority_index: Optional[int] = Field(None, ge=0)


class LineAllocationResponse(BaseModel):
    line_id: UUID
    batch_key: Optional[str] = None
    bottle_qty: int
    allocated: int
    remaining: int


class AllocationReportResponse(BaseModel):
    """Allocated and remaining bottles per line."""

    order_id: UUID
    lines: list[LineAllocationResponse]
    total_bottles: int
    total_allocated: int
    total_remaining: int


class BackfillItemResponse(BaseModel):
    batch_id: UUID
    line_id: UUID
    quantity: int


class BackfillResponse(BaseModel):
    order_id: UUID
    items: list[BackfillItemResponse]
