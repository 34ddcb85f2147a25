from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Request payload for the chat API; presence is checked by the coordinator."""
    prompt: Optional[str] = Field(default=None)
    userId: Optional[str] = Field(default=None)
    agent: Optional[str] = Field(default=None)


class ChatMessage(BaseModel):
    """Single role-tagged transcript entry sent to the inference API."""
    role: Literal["user", "assistant", "system"]
    content: str


class ChatResponse(BaseModel):
    """Response payload returned by the chat API."""
    response: str
    images: Optional[List[str]] = None
    imagenes: Optional[List[str]] = None
    visto: Optional[bool] = None
    escribiendo: Optional[bool] = None


class ImagesResponse(BaseModel):
    images: List[str]


class RandomImagesResponse(BaseModel):
    imagenes: List[str]


class ErrorResponse(BaseModel):
    error: str
