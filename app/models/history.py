from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field


class SessionCreate(BaseModel):
    html: Optional[str] = Field(
        None, description="On-load history page markup; fetched from HISTORY_SOURCE_URL when omitted"
    )


class FilterUpdate(BaseModel):
    """Partial filter update. Only fields present in the body are changed.

    Sending date_from/date_to as null clears that bound.
    """
    date_from: Optional[date] = Field(None, description="Inclusive start date (YYYY-MM-DD)")
    date_to: Optional[date] = Field(None, description="Inclusive end date (YYYY-MM-DD)")
    types: Optional[List[str]] = Field(None, description="Accepted usage types; empty list accepts all")
    keyword: Optional[str] = Field(None, description="Substring matched against types and places")
    hide_original: Optional[bool] = None


class CrawlRequest(BaseModel):
    date_from: Optional[date] = Field(None, description="Defaults to the current filter start date")
    date_to: Optional[date] = Field(None, description="Defaults to the current filter end date")


class HolidayText(BaseModel):
    raw: str = Field(..., description="Dates like 2025-01-01 separated by commas, 、 or spaces")
