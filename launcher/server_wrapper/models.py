from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ActionResult(BaseModel):
    ok: bool
    detail: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class ConsoleLine(BaseModel):
    line: str = Field(..., min_length=1, description="One console line, prefixes allowed (!, >, @, /mode)")


class ConsoleResult(BaseModel):
    ok: bool
    route: str
    command: str
    response: Optional[str] = None
    fallback: bool = False


class LogEntry(BaseModel):
    n: int
    line: str


class LogPage(BaseModel):
    ok: bool = True
    id: str
    cursor: str
    entries: List[LogEntry] = Field(default_factory=list)
    truncated: bool = False
