"""Error taxonomy for the chat and image endpoints.

Every error carries the HTTP status it maps to and a client-facing message;
the app renders them all as ``{"error": message}``.
"""

from __future__ import annotations

from typing import Optional


class ChatError(Exception):
    """Base class for errors surfaced to HTTP clients."""

    status_code = 500
    default_message = "Error interno del servidor"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class MissingField(ChatError):
    """Raised when a required request field is absent or blank."""

    status_code = 400
    default_message = "Faltan datos: prompt y userId son requeridos"


class InvalidSize(ChatError):
    """Raised when an image size is not one of the known size keywords."""

    status_code = 400
    default_message = "invalid size"


class ConfigLoadError(ChatError):
    """Raised when an agent's system prompt cannot be read."""


class UpstreamError(ChatError):
    """Raised when the inference API is unreachable or answers non-2xx."""

    default_message = "Error al comunicarse con el modelo"


class EmptyModelResponse(ChatError):
    """Raised when the inference API returned no usable content."""

    default_message = "No se pudo construir respuesta del modelo"
