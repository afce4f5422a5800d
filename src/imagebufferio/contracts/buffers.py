# src/imagebufferio/contracts/buffers.py
from __future__ import annotations

import itertools
import operator
from dataclasses import dataclass, field
from typing import Any, Iterator, List, NamedTuple, Optional, Sequence

import numpy as np
import numpy.typing as npt

from .elements import ElementType
from .errors import ArenaMismatch, BufferMismatch, InvalidDimensions


# ---------- Dimensiones ----------
def _as_dim(v: Any) -> int:
    """Entero exacto; 4.0 se acepta, 4.9 / "a" / True no."""
    if isinstance(v, (bool, np.bool_)):
        raise InvalidDimensions(f"dimensión no entera: {v!r}")
    try:
        return operator.index(v)
    except TypeError:
        pass
    if isinstance(v, (float, np.floating)) and float(v).is_integer():
        return int(v)
    raise InvalidDimensions(f"dimensión no entera: {v!r}")


class Dimensions(NamedTuple):
    width: int
    height: int
    bands: int

    @classmethod
    def checked(cls, dims: Sequence[int]) -> "Dimensions":
        """[width, height, bands] con al menos 3 entradas y todas >= 1."""
        if dims is None or len(dims) < 3:
            raise InvalidDimensions(f"se esperan 3 dimensiones [width, height, bands], no {dims!r}")
        w, h, b = (_as_dim(v) for v in dims[:3])
        if w < 1 or h < 1 or b < 1:
            raise InvalidDimensions(f"dimensiones deben ser >= 1: {(w, h, b)}")
        return cls(w, h, b)

    @property
    def pixels(self) -> int:
        return self.width * self.height

    def as_list(self) -> List[int]:
        return [self.width, self.height, self.bands]


# ---------- Buffers con dueño ----------
@dataclass(eq=False)
class BandBuffer:
    """Buffer plano (row-major) de una banda.

    `arena` es el arena que lo reservó; None si lo aportó el llamador.
    """
    data: Optional["npt.NDArray[Any]"]
    arena: Optional["BufferArena"] = None

    @property
    def released(self) -> bool:
        return self.data is None

    def __len__(self) -> int:
        return 0 if self.data is None else int(self.data.size)


_ARENA_IDS = itertools.count(1)


class BufferArena:
    """Reserva y libera BandBuffers. Un buffer sólo se libera en su arena."""

    def __init__(self, name: str = "numpy") -> None:
        self.name = f"{name}#{next(_ARENA_IDS)}"
        self.live = 0

    def allocate(self, length: int, element_type: ElementType) -> BandBuffer:
        if length < 1:
            raise InvalidDimensions(f"longitud de buffer inválida: {length}")
        self.live += 1
        return BandBuffer(np.empty(int(length), dtype=element_type.dtype), arena=self)

    def release(self, buf: BandBuffer) -> None:
        if buf.arena is not self:
            owner = buf.arena.name if buf.arena is not None else "llamador"
            raise ArenaMismatch(f"buffer de {owner} liberado en {self.name}")
        if buf.data is None:
            return
        buf.data = None
        self.live -= 1

    def __repr__(self) -> str:
        return f"BufferArena({self.name!r}, live={self.live})"


# ---------- Colección del llamador ----------
@dataclass(eq=False)
class BufferSet:
    """Colección de buffers (1 por banda) + dimensiones + tipo de elemento."""
    slots: List[Optional[BandBuffer]] = field(default_factory=list)
    dimensions: Optional[Dimensions] = None
    element_type: Optional[ElementType] = None

    @classmethod
    def from_arrays(cls, arrays: Sequence[Any], dimensions: Sequence[int] | None = None,
                    element_type: Any = None) -> "BufferSet":
        """Envuelve arrays del llamador (no pertenecen a ningún arena)."""
        slots: List[Optional[BandBuffer]] = []
        for a in arrays:
            arr = np.asarray(a)
            if element_type is not None:
                arr = arr.astype(ElementType.coerce(element_type).dtype, copy=False)
            slots.append(BandBuffer(np.ascontiguousarray(arr).reshape(-1)))
        dims = Dimensions.checked(dimensions) if dimensions is not None else None
        et = ElementType.coerce(element_type) if element_type is not None else None
        return cls(slots=slots, dimensions=dims, element_type=et)

    def __len__(self) -> int:
        return len(self.slots)

    def __getitem__(self, i: int) -> Optional["npt.NDArray[Any]"]:
        s = self.slots[i]
        return None if s is None else s.data

    def __iter__(self) -> Iterator[Optional["npt.NDArray[Any]"]]:
        for i in range(len(self.slots)):
            yield self[i]

    def is_empty(self) -> bool:
        return all(s is None or s.released for s in self.slots)

    def band_2d(self, i: int) -> "npt.NDArray[Any]":
        """Vista (height, width) de la banda i (sin copia)."""
        arr = self[i]
        if arr is None or self.dimensions is None:
            raise BufferMismatch(f"banda {i} vacía o sin dimensiones")
        return arr.reshape(self.dimensions.height, self.dimensions.width)

    def replace_with(self, other: "BufferSet") -> None:
        """Sobrescribe el contenido (slots, dimensiones, tipo) con el de `other`."""
        self.slots = list(other.slots)
        self.dimensions = other.dimensions
        self.element_type = other.element_type


__all__ = ["Dimensions", "BandBuffer", "BufferArena", "BufferSet"]
