from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import DateSource, MarkerKind


class DateRange(BaseModel):
    start: Optional[date] = None
    end: Optional[date] = None
    duration_days: Optional[int] = None


class TemporalMarker(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: MarkerKind
    n: int = Field(ge=0)


class ReferenceDateSet(BaseModel):
    """Known anchor dates for one document. Read-only for the whole run."""
    model_config = ConfigDict(frozen=True)

    ictus: Optional[date] = None
    admission: Optional[date] = None
    discharge: Optional[date] = None
    first_procedure_date: Optional[date] = None
    all_procedure_dates: tuple[date, ...] = ()


class TemporalContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_reference: bool = False
    pod: Optional[int] = None
    hd: Optional[int] = None
    resolved_date: Optional[date] = None
    date_source: DateSource = DateSource.UNRESOLVED
    cue: Optional[str] = None  # cue text that decided the classification
