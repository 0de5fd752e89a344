from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, Field, field_validator


class LatLon(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class SiqsRequest(LatLon):
    bortle: float | None = Field(default=None, description="Caller-measured Bortle value; clamped to 1..9.")
    name: str | None = Field(default=None, max_length=200)

    @field_validator("bortle")
    @classmethod
    def finite(cls, v: float | None) -> float | None:
        if v is not None and not math.isfinite(v):
            raise ValueError("bortle must be finite")
        return v


class WaterCheckResponse(BaseModel):
    is_water: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: str


class TerrainResponse(BaseModel):
    terrain_type: str
    elevation_m: float
    air_clarity: float = Field(..., ge=0.0, le=10.0)
    bortle_adjustment: float
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: str


class SiqsResponse(BaseModel):
    bortle: float = Field(..., ge=1.0, le=9.0)
    siqs: float = Field(..., ge=0.0, le=10.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    is_viable: bool
    source: str
    quality_label: str
    bortle_description: str
    lat: float | None = None
    lon: float | None = None
    location_name: str | None = None
    water: WaterCheckResponse | None = None
    terrain: TerrainResponse | None = None
    bortle_sources: list[str] | None = None


class BatchSiqsRequest(BaseModel):
    points: list[SiqsRequest] = Field(..., min_length=1)
    sort_by_siqs: bool = False


class BatchSiqsResponse(BaseModel):
    results: list[SiqsResponse]
    viable_count: int
    duration_ms: float


class CacheClearResponse(BaseModel):
    removed: int
    prefix: str | None = None


def siqs_response(data: dict[str, Any]) -> SiqsResponse:
    return SiqsResponse.model_validate(data)
