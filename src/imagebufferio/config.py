# src/imagebufferio/config.py
from __future__ import annotations

from functools import lru_cache
from typing import Dict, Literal

from pydantic import Field, PositiveInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Backend = Literal["rasterio", "gdal"]

# claves de perfil que no pueden ir como creation options
_RESERVED_OPTIONS = frozenset({"DRIVER", "WIDTH", "HEIGHT", "COUNT", "DTYPE", "MODE"})


class Settings(BaseSettings):
    """
    Config de la transferencia imagen <-> buffers. No toca disco.
    Se construye en composition/di.py (o vía entorno IBIO_*).
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="IBIO_",
        env_nested_delimiter="__",
        extra="forbid",
        frozen=True,
    )

    # --- codec ---
    backend: Backend = "rasterio"
    default_driver: str = "GTiff"
    # False si el llamador ya registró los drivers (evita el costo por llamada)
    init_library: bool = False
    creation_options: Dict[str, str] = Field(default_factory=dict)

    # --- transferencia ---
    rows_per_block: PositiveInt = 1
    check_row_writes: bool = True
    remove_partial_output: bool = True

    @field_validator("default_driver", mode="before")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v2 = str(v).strip()
        if not v2:
            raise ValueError("default_driver no puede ser vacío")
        return v2

    @field_validator("creation_options", mode="after")
    @classmethod
    def _upper_keys(cls, d: Dict[str, str]) -> Dict[str, str]:
        out = {str(k).strip().upper(): str(v) for k, v in d.items()}
        bad = set(out) & _RESERVED_OPTIONS
        if bad:
            raise ValueError(f"creation_options no admite: {sorted(bad)}")
        return out


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Instancia cacheada. Para tests, recuerda limpiar:
        get_settings.cache_clear()
    """
    return Settings()
