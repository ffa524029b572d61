from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadIn(BaseModel):
    # left untyped so a non-list can be rejected with 400 instead of 422
    links: Any = None
    password: str = ""


class UploadResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    original_url: str = Field(alias="originalUrl")
    public_link: Optional[str] = Field(default=None, alias="publicLink")
    title: str
    internal_id: Optional[str] = Field(default=None, alias="internalId")
    status: str  # success | failed | invalid


class UploadOut(BaseModel):
    success: bool = True
    results: List[UploadResult]
    message: str


class StatusOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_links: int = Field(alias="totalLinks")
    pending_uploads: int = Field(alias="pendingUploads")
    is_refreshing: bool = Field(alias="isRefreshing")
    debounce_armed: bool = Field(alias="debounceArmed")
    next_refresh: str = Field(alias="nextRefresh")
    last_refresh: Optional[datetime] = Field(default=None, alias="lastRefresh")
    last_report: Optional[Dict[str, Any]] = Field(default=None, alias="lastReport")
