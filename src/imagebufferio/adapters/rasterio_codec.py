# src/imagebufferio/adapters/rasterio_codec.py
from __future__ import annotations

import logging
import threading
import warnings
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

import numpy as np
import rasterio
from rasterio._err import CPLE_BaseError
from rasterio.errors import NotGeoreferencedWarning, RasterioError
from rasterio.windows import Window

from ..contracts.buffers import BandBuffer, BufferArena
from ..contracts.elements import CodecType, ElementType
from ..ports.raster_codec import RasterCodecPort

log = logging.getLogger(__name__)

# rasterio no expone complejos enteros como dtype numpy -> no soportados aquí
_CODEC2DTYPE: Mapping[CodecType, str] = MappingProxyType({
    CodecType.BYTE: "uint8",
    CodecType.UINT16: "uint16",
    CodecType.INT16: "int16",
    CodecType.INT32: "int32",
    CodecType.FLOAT32: "float32",
    CodecType.FLOAT64: "float64",
    CodecType.CFLOAT32: "complex64",
    CodecType.CFLOAT64: "complex128",
})

# Errores de GDAL que rasterio no envuelve en RasterioError (p.ej. PNG/JPEG
# codifican al cerrar y reportan CPLE_NotSupportedError ahí)
_CODEC_ERRORS = (RasterioError, CPLE_BaseError, ValueError)

# rasterio.Env vive en un threading.local: un Env por hilo, no por proceso
_LOCAL = threading.local()


def _window(row: int, nrows: int, width: int) -> Window:
    return Window(0, row, width, nrows)


@dataclass
class RasterioCodec(RasterCodecPort):
    """Codec sobre rasterio. Backend por defecto."""
    arena: BufferArena = field(default_factory=lambda: BufferArena("rasterio"))

    def global_init(self) -> None:
        if getattr(_LOCAL, "env", None) is not None:
            return
        env = rasterio.Env()
        env.__enter__()  # se mantiene abierto mientras viva el hilo
        _LOCAL.env = env
        log.debug("rasterio Env inicializado en %s (GDAL %s)",
                  threading.current_thread().name, rasterio.__gdal_version__)

    def supports(self, codec_type: CodecType) -> bool:
        return codec_type in _CODEC2DTYPE

    # --------------- apertura / cierre ---------------
    def open_for_read(self, uri: str) -> Optional[Any]:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", NotGeoreferencedWarning)
                return rasterio.open(uri, "r")
        except _CODEC_ERRORS as e:
            log.debug("rasterio.open(%s) falló: %s", uri, e)
            return None

    def create_for_write(self, uri: str, width: int, height: int, bands: int,
                         codec_type: CodecType, driver: str,
                         options: Optional[Mapping[str, str]] = None) -> Optional[Any]:
        dtype = _CODEC2DTYPE.get(codec_type)
        if dtype is None:
            log.debug("tipo %s no soportado por rasterio", codec_type.value)
            return None
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", NotGeoreferencedWarning)
                return rasterio.open(uri, "w", driver=driver, width=width, height=height,
                                     count=bands, dtype=dtype, **dict(options or {}))
        except (*_CODEC_ERRORS, TypeError) as e:
            log.debug("rasterio create %s [%s] falló: %s", uri, driver, e)
            return None

    def dimensions(self, handle: Any) -> Tuple[int, int, int]:
        return int(handle.width), int(handle.height), int(handle.count)

    def close(self, handle: Any) -> bool:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", NotGeoreferencedWarning)
                handle.close()
            return True
        except _CODEC_ERRORS as e:
            log.warning("cierre de %s con error: %s", getattr(handle, "name", handle), e)
            return False

    # --------------- filas ---------------
    def read_rows(self, handle: Any, band: int, row: int, nrows: int, width: int,
                  codec_type: CodecType, out: np.ndarray) -> bool:
        dtype = _CODEC2DTYPE.get(codec_type)
        if dtype is None:
            return False
        try:
            arr = handle.read(band, window=_window(row, nrows, width), out_dtype=dtype)
        except _CODEC_ERRORS as e:
            log.debug("lectura banda %d filas %d+%d falló: %s", band, row, nrows, e)
            return False
        out[...] = arr.reshape(-1)
        return True

    def write_rows(self, handle: Any, band: int, row: int, nrows: int, width: int,
                   codec_type: CodecType, data: np.ndarray) -> bool:
        dtype = _CODEC2DTYPE.get(codec_type)
        if dtype is None:
            return False
        try:
            handle.write(data.reshape(nrows, width).astype(dtype, copy=False), band,
                         window=_window(row, nrows, width))
        except _CODEC_ERRORS as e:
            log.debug("escritura banda %d filas %d+%d falló: %s", band, row, nrows, e)
            return False
        return True

    # --------------- memoria ---------------
    def allocate(self, length: int, element_type: ElementType) -> BandBuffer:
        return self.arena.allocate(length, element_type)

    def release(self, buf: BandBuffer) -> None:
        self.arena.release(buf)


__all__ = ["RasterioCodec"]
