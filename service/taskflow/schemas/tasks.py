from __future__ import annotations

from typing import Literal, Optional
from pydantic import BaseModel


class SessionCreate(BaseModel):
    role: str = ""
    username: str = ""
    serial_no: str = ""
    task_no: str = ""


class AnchorUpdate(BaseModel):
    serial_no: str = ""
    task_no: str = ""


class EntryUpdate(BaseModel):
    status: Optional[Literal["", "Yes", "No"]] = None
    remarks: Optional[str] = None
    cost: Optional[str] = None
    sound_status: Optional[str] = None
    temperature: Optional[str] = None
