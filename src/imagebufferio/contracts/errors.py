# src/imagebufferio/contracts/errors.py
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ImageBufferError(Exception):
    """Raíz de los errores de transferencia imagen <-> buffers."""
    kind = "error"


class InvalidDimensions(ImageBufferError, ValueError):
    kind = "invalid_dimensions"


class BufferMismatch(ImageBufferError, ValueError):
    kind = "buffer_mismatch"


class UnsupportedElementType(ImageBufferError, TypeError):
    kind = "unsupported_element_type"


class OpenFailed(ImageBufferError, OSError):
    kind = "open_failed"


class CreateFailed(ImageBufferError, OSError):
    kind = "create_failed"


class TransferFailed(ImageBufferError, OSError):
    """Falla en la lectura/escritura de una fila (o bloque de filas)."""
    kind = "transfer_failed"


class ArenaMismatch(ImageBufferError, ValueError):
    """Buffer liberado por un arena distinto del que lo reservó."""
    kind = "arena_mismatch"


# -------------------------
# Reporte (fachada booleana)
# -------------------------
class Operation(str, Enum):
    READ = "read"
    WRITE = "write"
    CLEANUP = "cleanup"


class TransferError(BaseModel):
    model_config = ConfigDict(frozen=True)
    operation: Operation
    kind: str
    message: str
    path: Optional[str] = None
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_exc(cls, op: Operation, exc: ImageBufferError, path: Optional[str] = None) -> "TransferError":
        return cls(operation=op, kind=exc.kind, message=str(exc), path=path)


__all__ = [
    "ImageBufferError", "InvalidDimensions", "BufferMismatch", "UnsupportedElementType",
    "OpenFailed", "CreateFailed", "TransferFailed", "ArenaMismatch",
    "Operation", "TransferError",
]
