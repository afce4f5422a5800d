# src/imagebufferio/ports/raster_codec.py
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, Tuple, runtime_checkable

import numpy.typing as npt

from ..contracts.buffers import BandBuffer, BufferArena
from ..contracts.elements import CodecType, ElementType

URI = str
Handle = Any  # opaco: lo define cada adapter


@runtime_checkable
class RasterCodecPort(Protocol):
    """
    Colaborador de codec raster (GDAL/rasterio).
    Reglas:
      - bandas 1-based, filas 0-based.
      - open/create devuelven None si fallan (no lanzan).
      - supports() se consulta antes de abrir/crear: tipo no soportado = sin I/O.
      - read_rows/write_rows devuelven False si el codec reporta error.
      - el handle se cierra siempre con close(), dentro de la misma llamada.
    """
    arena: BufferArena

    def global_init(self) -> None: ...
    def supports(self, codec_type: CodecType) -> bool: ...
    def open_for_read(self, uri: URI) -> Optional[Handle]: ...
    def create_for_write(self, uri: URI, width: int, height: int, bands: int,
                         codec_type: CodecType, driver: str,
                         options: Optional[Mapping[str, str]] = None) -> Optional[Handle]: ...
    def dimensions(self, handle: Handle) -> Tuple[int, int, int]: ...  # (width, height, bands)
    def read_rows(self, handle: Handle, band: int, row: int, nrows: int, width: int,
                  codec_type: CodecType, out: "npt.NDArray[Any]") -> bool: ...
    def write_rows(self, handle: Handle, band: int, row: int, nrows: int, width: int,
                   codec_type: CodecType, data: "npt.NDArray[Any]") -> bool: ...
    def close(self, handle: Handle) -> bool: ...  # False si el volcado falla
    def allocate(self, length: int, element_type: ElementType) -> BandBuffer: ...
    def release(self, buf: BandBuffer) -> None: ...


__all__ = ["RasterCodecPort", "URI", "Handle"]
