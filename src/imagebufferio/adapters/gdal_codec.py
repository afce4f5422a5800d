# src/imagebufferio/adapters/gdal_codec.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

import numpy as np
from osgeo import gdal  # type: ignore

from ..contracts.buffers import BandBuffer, BufferArena
from ..contracts.elements import CodecType, ElementType
from ..ports.raster_codec import RasterCodecPort

log = logging.getLogger(__name__)

gdal.UseExceptions()

_INIT_LOCK = threading.Lock()
_REGISTERED = False


def _gdal_type(codec_type: CodecType) -> int:
    return gdal.GetDataTypeByName(codec_type.value)


def _options(options: Optional[Mapping[str, str]]) -> List[str]:
    return [f"{str(k).upper()}={v}" for k, v in (options or {}).items()]


@dataclass
class _GdalHandle:
    uri: str
    ds: Optional["gdal.Dataset"]


@dataclass
class GdalCodec(RasterCodecPort):
    """Codec sobre los bindings de GDAL (osgeo). Soporta complejos enteros."""
    arena: BufferArena = field(default_factory=lambda: BufferArena("gdal"))

    def global_init(self) -> None:
        global _REGISTERED
        with _INIT_LOCK:
            if not _REGISTERED:
                gdal.AllRegister()
                _REGISTERED = True
                log.debug("GDAL %s: %d drivers registrados",
                          gdal.__version__, gdal.GetDriverCount())

    def supports(self, codec_type: CodecType) -> bool:
        return _gdal_type(codec_type) != gdal.GDT_Unknown

    # --------------- apertura / cierre ---------------
    def open_for_read(self, uri: str) -> Optional[_GdalHandle]:
        try:
            ds = gdal.Open(str(uri), gdal.GA_ReadOnly)
        except RuntimeError as e:
            log.debug("gdal.Open(%s) falló: %s", uri, e)
            return None
        if ds is None:
            return None
        return _GdalHandle(str(uri), ds)

    def create_for_write(self, uri: str, width: int, height: int, bands: int,
                         codec_type: CodecType, driver: str,
                         options: Optional[Mapping[str, str]] = None) -> Optional[_GdalHandle]:
        drv = gdal.GetDriverByName(driver)
        if drv is None:
            log.debug("driver GDAL desconocido: %s", driver)
            return None
        gdt = _gdal_type(codec_type)
        if gdt == gdal.GDT_Unknown:
            return None
        try:
            ds = drv.Create(str(uri), width, height, bands, gdt, options=_options(options))
        except RuntimeError as e:
            log.debug("Create %s [%s] falló: %s", uri, driver, e)
            return None
        if ds is None:
            return None
        return _GdalHandle(str(uri), ds)

    def dimensions(self, handle: _GdalHandle) -> Tuple[int, int, int]:
        ds = handle.ds
        return ds.RasterXSize, ds.RasterYSize, ds.RasterCount

    def close(self, handle: _GdalHandle) -> bool:
        if handle.ds is None:
            return True
        try:
            handle.ds.FlushCache()
            return True
        except RuntimeError as e:
            log.warning("FlushCache de %s con error: %s", handle.uri, e)
            return False
        finally:
            handle.ds = None  # cierre explícito

    # --------------- filas ---------------
    def read_rows(self, handle: _GdalHandle, band: int, row: int, nrows: int, width: int,
                  codec_type: CodecType, out: np.ndarray) -> bool:
        try:
            raw = handle.ds.GetRasterBand(band).ReadRaster(
                0, row, width, nrows, buf_type=_gdal_type(codec_type))
        except RuntimeError as e:
            log.debug("ReadRaster banda %d filas %d+%d falló: %s", band, row, nrows, e)
            return False
        if raw is None:
            return False
        # GDAL ya convirtió al tipo destino; sólo se reinterpretan los bytes
        out[...] = np.frombuffer(raw, dtype=out.dtype)
        return True

    def write_rows(self, handle: _GdalHandle, band: int, row: int, nrows: int, width: int,
                   codec_type: CodecType, data: np.ndarray) -> bool:
        try:
            err = handle.ds.GetRasterBand(band).WriteRaster(
                0, row, width, nrows, np.ascontiguousarray(data).tobytes(),
                buf_type=_gdal_type(codec_type))
        except RuntimeError as e:
            log.debug("WriteRaster banda %d filas %d+%d falló: %s", band, row, nrows, e)
            return False
        return err == gdal.CE_None

    # --------------- memoria ---------------
    def allocate(self, length: int, element_type: ElementType) -> BandBuffer:
        return self.arena.allocate(length, element_type)

    def release(self, buf: BandBuffer) -> None:
        self.arena.release(buf)


__all__ = ["GdalCodec"]
