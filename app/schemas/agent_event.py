from typing import Optional

from pydantic import BaseModel


class ProcessPendingResult(BaseModel):
    """Counters from one ledger drain."""

    scanned: int = 0
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0


class ProcessPendingResponse(ProcessPendingResult):
    success: bool = True
    request_id: str


class CronSkippedResponse(BaseModel):
    success: bool = True
    skipped: bool = True
    reason: str
    request_id: str


class CronErrorResponse(BaseModel):
    success: bool = False
    error: str
    request_id: Optional[str] = None
