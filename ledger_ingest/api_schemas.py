"""
API request/response schemas for the ingest read model.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IngestRunResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    object_key: str = Field(..., alias="objectKey")
    status: str
    rows_ok: int = Field(..., alias="rowsOk")
    rows_failed: int = Field(..., alias="rowsFailed")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    started_at: datetime = Field(..., alias="startedAt")
    finished_at: Optional[datetime] = Field(None, alias="finishedAt")


class IngestRunListResponse(BaseModel):
    ingests: List[IngestRunResponse]


class PositionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    portfolio_id: str = Field(..., alias="portfolioId")
    symbol: str
    # Decimal -> float for client convenience
    quantity: float
    avg_cost: float = Field(..., alias="avgCost")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")


class PositionListResponse(BaseModel):
    positions: List[PositionResponse]


class DevIngestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    portfolio_id: str = Field(..., alias="portfolioId", min_length=1)
    key: str = Field(..., min_length=1)


class DevIngestResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    run_id: str = Field(..., alias="runId")
    kind: str
    task_id: Optional[str] = Field(None, alias="taskId")
