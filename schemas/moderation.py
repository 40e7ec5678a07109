from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from uuid import UUID


class CreateBanRequest(BaseModel):
    display_name: str
    duration: Optional[str] = Field("never", description="never | 1h | 6h | 24h | 7d")

class BanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    room_id: UUID
    display_name: str
    created_at: datetime
    expires_at: Optional[datetime] = None

class CreateReportRequest(BaseModel):
    content_type: str = Field(..., pattern="^(post|comment)$")
    content_id: UUID
    reason: Optional[str] = None

class UpdateReportRequest(BaseModel):
    status: str = Field(..., pattern="^(pending|resolved|dismissed)$")

class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    content_type: str
    content_id: UUID
    reason: Optional[str] = None
    status: str
    created_at: datetime
