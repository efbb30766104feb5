from __future__ import annotations

from typing import Any, Dict, List, Union

from pydantic import BaseModel, Field


class Envelope(BaseModel):
    """Response envelope shared by every endpoint, success or error."""

    success: bool
    status: int
    message: str
    data: Union[List[Any], Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def ok(cls, message: str, data: Union[List[Any], Dict[str, Any], None] = None, *, status: int = 200) -> "Envelope":
        return cls(success=True, status=status, message=message, data=data if data is not None else [])

    @classmethod
    def error(cls, status: int, message: str, data: Union[List[Any], Dict[str, Any], None] = None) -> "Envelope":
        return cls(success=False, status=status, message=message, data=data if data is not None else [])


class ParamsBody(BaseModel):
    """Request body wrapper: every endpoint reads its input from ``params``."""

    params: Dict[str, Any] = Field(default_factory=dict)
