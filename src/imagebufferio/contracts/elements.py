# src/imagebufferio/contracts/elements.py
from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping

import numpy as np

# ---------- Tipos complejos enteros ----------
# numpy no tiene complejos enteros: se representan como pares (real, imag)
# empaquetados, con el mismo layout que usa el codec en memoria.
CUINT16_DTYPE = np.dtype([("real", np.uint16), ("imag", np.uint16)])
CINT32_DTYPE = np.dtype([("real", np.int32), ("imag", np.int32)])


class CodecType(str, Enum):
    """Tipos de dato del codec (nombres idénticos a los de GDAL)."""
    BYTE = "Byte"
    UINT16 = "UInt16"
    INT16 = "Int16"
    INT32 = "Int32"
    FLOAT32 = "Float32"
    FLOAT64 = "Float64"
    CINT16 = "CInt16"
    CINT32 = "CInt32"
    CFLOAT32 = "CFloat32"
    CFLOAT64 = "CFloat64"
    UNKNOWN = "Unknown"


class ElementType(str, Enum):
    """Representación en memoria de un píxel.

    Incluye tags sin equivalente en el codec (int8, uint32, ...): existen para
    que `map_element_type` tenga un caso "no soportado" explícito.
    """
    UINT8 = "uint8"
    INT16 = "int16"
    UINT16 = "uint16"
    INT32 = "int32"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    CUINT16 = "cuint16"
    CINT32 = "cint32"
    CFLOAT32 = "cfloat32"
    CFLOAT64 = "cfloat64"
    # sin mapeo
    INT8 = "int8"
    UINT32 = "uint32"
    INT64 = "int64"
    UINT64 = "uint64"
    FLOAT16 = "float16"

    @property
    def dtype(self) -> np.dtype:
        return _DTYPES[self]

    @property
    def itemsize(self) -> int:
        return self.dtype.itemsize

    @property
    def is_complex(self) -> bool:
        return self in (ElementType.CUINT16, ElementType.CINT32,
                        ElementType.CFLOAT32, ElementType.CFLOAT64)

    @classmethod
    def from_dtype(cls, dt: Any) -> "ElementType":
        d = np.dtype(dt)
        for et, known in _DTYPES.items():
            if known == d:
                return et
        raise ValueError(f"dtype {d} sin ElementType asociado")

    @classmethod
    def coerce(cls, value: Any) -> "ElementType":
        """Acepta ElementType, su valor str, un np.dtype o un tipo escalar."""
        if isinstance(value, ElementType):
            return value
        if value is None:  # np.dtype(None) sería float64
            raise ValueError("ElementType requerido")
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.from_dtype(value)


_DTYPES: Mapping[ElementType, np.dtype] = MappingProxyType({
    ElementType.UINT8: np.dtype(np.uint8),
    ElementType.INT16: np.dtype(np.int16),
    ElementType.UINT16: np.dtype(np.uint16),
    ElementType.INT32: np.dtype(np.int32),
    ElementType.FLOAT32: np.dtype(np.float32),
    ElementType.FLOAT64: np.dtype(np.float64),
    ElementType.CUINT16: CUINT16_DTYPE,
    ElementType.CINT32: CINT32_DTYPE,
    ElementType.CFLOAT32: np.dtype(np.complex64),
    ElementType.CFLOAT64: np.dtype(np.complex128),
    ElementType.INT8: np.dtype(np.int8),
    ElementType.UINT32: np.dtype(np.uint32),
    ElementType.INT64: np.dtype(np.int64),
    ElementType.UINT64: np.dtype(np.uint64),
    ElementType.FLOAT16: np.dtype(np.float16),
})

_CODEC_MAP: Mapping[ElementType, CodecType] = MappingProxyType({
    ElementType.UINT8: CodecType.BYTE,
    ElementType.INT16: CodecType.INT16,
    ElementType.UINT16: CodecType.UINT16,
    ElementType.INT32: CodecType.INT32,
    ElementType.FLOAT32: CodecType.FLOAT32,
    ElementType.FLOAT64: CodecType.FLOAT64,
    # complejo sin signo 16 bits -> CInt16 (mismo tamaño de par)
    ElementType.CUINT16: CodecType.CINT16,
    ElementType.CINT32: CodecType.CINT32,
    ElementType.CFLOAT32: CodecType.CFLOAT32,
    ElementType.CFLOAT64: CodecType.CFLOAT64,
})

SUPPORTED_ELEMENT_TYPES: FrozenSet[ElementType] = frozenset(_CODEC_MAP)


def map_element_type(element_type: Any) -> CodecType:
    """ElementType -> CodecType. Total: lo no soportado da CodecType.UNKNOWN."""
    try:
        et = ElementType.coerce(element_type)
    except (ValueError, TypeError):
        return CodecType.UNKNOWN
    return _CODEC_MAP.get(et, CodecType.UNKNOWN)


__all__ = [
    "CodecType", "ElementType", "SUPPORTED_ELEMENT_TYPES", "map_element_type",
    "CUINT16_DTYPE", "CINT32_DTYPE",
]
