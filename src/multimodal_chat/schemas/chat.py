"""Pydantic models for chat requests and responses."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """Represents a single chat message."""

    role: Literal["user", "assistant"]
    content: Union[str, List[Dict[str, Any]]] = ""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ChatRequest(BaseModel):
    """Incoming chat request payload."""

    messages: List[ChatMessage]
    image_data: Optional[str] = Field(default=None, alias="imageData")
    csv_data: Optional[str] = Field(default=None, alias="csvData")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with the camel-case keys the server expects."""

        return self.model_dump(by_alias=True, exclude_none=True)


class ErrorResponse(BaseModel):
    """JSON body returned for failed chat requests."""

    error: str


__all__ = ["ChatMessage", "ChatRequest", "ErrorResponse"]
