# src/imagebufferio/services/transfer.py
from __future__ import annotations

"""
Transferencia imagen <-> buffers por banda (contracts-first).

Operaciones:
  • read_image(): abre la imagen, descubre [width, height, bands] y carga
    cada banda en un buffer plano del tipo pedido, fila a fila (o bloque de
    `rows_per_block` filas) a través de un único buffer temporal.
  • write_image(): crea la imagen con el driver indicado y la escribe fila a
    fila directamente desde los buffers del llamador.
  • cleanup(): libera cada buffer en el arena que lo reservó y deja el slot
    en None (idempotente).

Las variantes image_to_buffer / buffer_to_image / clean_buffer devuelven
bool y dejan el detalle del fallo en `last_error`.

Notas:
  - La conversión de tipos la hace el codec (GDAL), no este servicio.
  - No hay reintentos: cada fallo es terminal para esa llamada.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import Settings, get_settings
from ..contracts.buffers import BandBuffer, BufferSet, Dimensions
from ..contracts.elements import CodecType, ElementType, map_element_type
from ..contracts.errors import (
    BufferMismatch,
    CreateFailed,
    ImageBufferError,
    OpenFailed,
    Operation,
    TransferError,
    TransferFailed,
    UnsupportedElementType,
)
from ..ports.raster_codec import RasterCodecPort

log = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]
Buffers = Union[BufferSet, Sequence[Any]]


@dataclass
class RasterBufferTransfer:
    codec: RasterCodecPort
    settings: Settings = field(default_factory=get_settings)
    last_error: Optional[TransferError] = field(default=None, init=False)

    # ------ Tipos ------
    @staticmethod
    def map_element_type(element_type: Any) -> CodecType:
        return map_element_type(element_type)

    def _resolve_type(self, element_type: Any) -> Tuple[ElementType, CodecType]:
        try:
            et = ElementType.coerce(element_type)
        except (ValueError, TypeError) as e:
            raise UnsupportedElementType(f"tipo de elemento desconocido: {element_type!r}") from e
        ct = map_element_type(et)
        if ct is CodecType.UNKNOWN:
            raise UnsupportedElementType(f"{et.value} no tiene tipo equivalente en el codec")
        if not self.codec.supports(ct):
            raise UnsupportedElementType(f"{et.value} ({ct.value}) no soportado por el backend")
        return et, ct

    # ------ Helpers ------
    def _maybe_init(self, init_library: Optional[bool]) -> None:
        flag = self.settings.init_library if init_library is None else init_library
        if flag:
            self.codec.global_init()

    def _block(self, height: int) -> int:
        return min(int(self.settings.rows_per_block), height)

    def _discard(self, uri: str) -> None:
        if self.settings.remove_partial_output and os.path.exists(uri):
            os.remove(uri)
            log.debug("salida parcial eliminada: %s", uri)

    @staticmethod
    def _infer_type(bs: BufferSet) -> ElementType:
        if bs.element_type is not None:
            return bs.element_type
        for arr in bs:
            if arr is not None:
                try:
                    return ElementType.from_dtype(arr.dtype)
                except ValueError as e:
                    raise UnsupportedElementType(str(e)) from e
        raise BufferMismatch("no hay buffers para inferir el tipo de elemento")

    @staticmethod
    def _check_buffers(bs: BufferSet, dims: Dimensions, et: ElementType) -> List[np.ndarray]:
        if len(bs) != dims.bands:
            raise BufferMismatch(f"{len(bs)} buffers para {dims.bands} bandas")
        out: List[np.ndarray] = []
        for i, arr in enumerate(bs):
            if arr is None:
                raise BufferMismatch(f"buffer {i} vacío o liberado")
            if arr.size != dims.pixels:
                raise BufferMismatch(f"buffer {i}: {arr.size} elementos, se esperaban {dims.pixels}")
            if arr.dtype != et.dtype:
                raise BufferMismatch(f"buffer {i}: dtype {arr.dtype}, se esperaba {et.dtype}")
            out.append(np.ascontiguousarray(arr).reshape(-1))
        return out

    # ------ API pública ------
    def read_image(self, path: PathLike, element_type: Any, *, init_library: Optional[bool] = None) -> BufferSet:
        et, ct = self._resolve_type(element_type)
        self._maybe_init(init_library)
        uri = os.fspath(path)
        handle = self.codec.open_for_read(uri)
        if handle is None:
            raise OpenFailed(f"no se pudo abrir {uri}")

        bands: List[BandBuffer] = []
        scratch: Optional[BandBuffer] = None
        try:
            dims = Dimensions(*self.codec.dimensions(handle))
            if dims.width < 1 or dims.height < 1 or dims.bands < 1:
                raise OpenFailed(f"{uri} sin datos raster: {dims.as_list()}")
            w = dims.width
            block = self._block(dims.height)
            # Temporal de un bloque de filas, reservado una sola vez
            scratch = self.codec.allocate(block * w, et)
            for b in range(1, dims.bands + 1):
                buf = self.codec.allocate(dims.pixels, et)
                bands.append(buf)
                for row in range(0, dims.height, block):
                    n = min(block, dims.height - row)
                    tmp = scratch.data[: n * w]
                    if not self.codec.read_rows(handle, b, row, n, w, ct, tmp):
                        raise TransferFailed(f"{uri}: lectura banda {b} filas {row}..{row + n - 1}")
                    buf.data[row * w:(row + n) * w] = tmp
        except Exception:
            for buf in bands:
                self.codec.release(buf)
            raise
        finally:
            if scratch is not None:
                self.codec.release(scratch)
            self.codec.close(handle)

        log.debug("leído %s: %s %s", uri, dims.as_list(), et.value)
        return BufferSet(slots=list(bands), dimensions=dims, element_type=et)

    def write_image(self, buffers: Buffers, dimensions: Sequence[int], path: PathLike,
                    driver: Optional[str] = None, element_type: Any = None, *,
                    init_library: Optional[bool] = None) -> Path:
        dims = Dimensions.checked(dimensions)
        bs = buffers if isinstance(buffers, BufferSet) else BufferSet.from_arrays(buffers)
        et, ct = self._resolve_type(element_type if element_type is not None else self._infer_type(bs))
        arrays = self._check_buffers(bs, dims, et)

        self._maybe_init(init_library)
        drv = driver or self.settings.default_driver
        uri = os.fspath(path)
        handle = self.codec.create_for_write(uri, dims.width, dims.height, dims.bands, ct, drv,
                                             self.settings.creation_options)
        if handle is None:
            raise CreateFailed(f"no se pudo crear {uri} (driver={drv}, tipo={ct.value})")

        w = dims.width
        block = self._block(dims.height)
        try:
            for b, arr in enumerate(arrays, start=1):
                for row in range(0, dims.height, block):
                    n = min(block, dims.height - row)
                    # Sin temporal: el buffer del llamador ya es contiguo por fila
                    if self.codec.write_rows(handle, b, row, n, w, ct, arr[row * w:(row + n) * w]):
                        continue
                    if self.settings.check_row_writes:
                        raise TransferFailed(f"{uri}: escritura banda {b} filas {row}..{row + n - 1}")
                    log.warning("%s: escritura banda %d filas %d..%d ignorada", uri, b, row, row + n - 1)
        except Exception:
            self.codec.close(handle)
            self._discard(uri)
            raise

        # sin volcado no hay imagen en disco (formatos copy-only codifican al cerrar)
        if not self.codec.close(handle):
            self._discard(uri)
            raise TransferFailed(f"{uri}: error al cerrar/volcar la imagen")
        log.debug("escrito %s: %s %s [%s]", uri, dims.as_list(), et.value, drv)
        return Path(uri)

    def cleanup(self, buffers: BufferSet) -> bool:
        for i, slot in enumerate(buffers.slots):
            if slot is None:
                continue
            # buffers del llamador (arena None) sólo se sueltan
            if slot.arena is not None:
                self.codec.release(slot)
            buffers.slots[i] = None
        return True

    # ------ Fachada booleana ------
    def _fail(self, op: Operation, exc: ImageBufferError, path: Optional[PathLike] = None) -> bool:
        self.last_error = TransferError.from_exc(op, exc, os.fspath(path) if path is not None else None)
        log.debug("%s falló: %s", op.value, exc)
        return False

    def image_to_buffer(self, path: PathLike, out: BufferSet, element_type: Any, *,
                        init_library: Optional[bool] = None) -> bool:
        try:
            bs = self.read_image(path, element_type, init_library=init_library)
        except ImageBufferError as e:
            return self._fail(Operation.READ, e, path)
        out.replace_with(bs)
        self.last_error = None
        return True

    def buffer_to_image(self, buffers: Buffers, dimensions: Sequence[int], path: PathLike,
                        driver: Optional[str] = None, *, init_library: Optional[bool] = None) -> bool:
        try:
            self.write_image(buffers, dimensions, path, driver, init_library=init_library)
        except ImageBufferError as e:
            return self._fail(Operation.WRITE, e, path)
        self.last_error = None
        return True

    def clean_buffer(self, buffers: BufferSet) -> bool:
        try:
            return self.cleanup(buffers)
        except ImageBufferError as e:
            return self._fail(Operation.CLEANUP, e)


__all__ = ["RasterBufferTransfer"]
