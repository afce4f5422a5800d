# src/imagebufferio/composition/di.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from ..config import Settings, get_settings
from ..ports.raster_codec import RasterCodecPort
from ..services.transfer import RasterBufferTransfer


def load_settings_from_yaml(path: Path, **overrides: Any) -> Settings:
    data: Mapping[str, Any] = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return Settings(**{**data, **overrides})


def build_codec(settings: Settings) -> RasterCodecPort:
    # import diferido: sólo se exige el backend elegido
    if settings.backend == "gdal":
        from ..adapters.gdal_codec import GdalCodec
        return GdalCodec()
    from ..adapters.rasterio_codec import RasterioCodec
    return RasterioCodec()


def build_transfer(settings: Optional[Settings] = None, codec: Optional[RasterCodecPort] = None) -> RasterBufferTransfer:
    st = settings or get_settings()
    return RasterBufferTransfer(codec=codec or build_codec(st), settings=st)
