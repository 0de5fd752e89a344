from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CityLightProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    lat: float = Field(..., ge=-90.0, le=90.0)
    lon: float = Field(..., ge=-180.0, le=180.0)
    population: int = Field(..., gt=0)

    bortle_core: float = Field(..., ge=1.0, le=9.0)
    radius_core_km: float = Field(..., gt=0.0)
    radius_influence_km: float = Field(..., gt=0.0)

    elevation_m: float | None = None
    coastal_factor: float = Field(default=1.0, ge=0.5, le=2.0)
    industrial_index: float = Field(default=1.0, ge=0.5, le=2.0)
    cultural_lighting: float = Field(default=1.0, ge=0.5, le=2.0)
    lighting_efficiency: float = Field(default=1.0, gt=0.0, le=1.0)

    @model_validator(mode="after")
    def _radii_ordered(self) -> "CityLightProfile":
        if self.radius_influence_km <= self.radius_core_km:
            raise ValueError("radius_influence_km must exceed radius_core_km")
        return self


def _city(name: str, lat: float, lon: float, population: int, core: float, r_core: float, r_influence: float, **extra: float) -> CityLightProfile:
    return CityLightProfile(
        name=name,
        lat=lat,
        lon=lon,
        population=population,
        bortle_core=core,
        radius_core_km=r_core,
        radius_influence_km=r_influence,
        **extra,
    )


CITY_LIGHT_PROFILES: tuple[CityLightProfile, ...] = (
    # China, tier 1
    _city("Beijing", 39.9042, 116.4074, 21_540_000, 9.0, 18, 150,
          elevation_m=43, industrial_index=1.15, cultural_lighting=1.1, lighting_efficiency=0.92),
    _city("Shanghai", 31.2304, 121.4737, 24_280_000, 9.0, 22, 160,
          elevation_m=4, coastal_factor=1.2, industrial_index=1.18, lighting_efficiency=0.94),
    _city("Guangzhou", 23.1291, 113.2644, 15_300_000, 8.8, 16, 130,
          elevation_m=21, industrial_index=1.15, cultural_lighting=1.05, lighting_efficiency=0.93),
    _city("Shenzhen", 22.5431, 114.0579, 12_590_000, 9.0, 15, 120,
          elevation_m=5, coastal_factor=1.15, industrial_index=1.2, lighting_efficiency=0.95),
    # China, tier 2
    _city("Chengdu", 30.5728, 104.0668, 16_330_000, 8.5, 14, 125,
          elevation_m=500, industrial_index=1.1, cultural_lighting=1.08, lighting_efficiency=0.91),
    _city("Chongqing", 29.5630, 106.5516, 30_750_000, 8.7, 20, 145,
          elevation_m=243, industrial_index=1.12, cultural_lighting=1.05, lighting_efficiency=0.89),
    _city("Tianjin", 39.1422, 117.1767, 13_870_000, 8.6, 15, 130,
          elevation_m=3, coastal_factor=1.1, industrial_index=1.14, lighting_efficiency=0.91),
    _city("Wuhan", 30.5928, 114.3055, 11_080_000, 8.5, 14, 120,
          elevation_m=23, industrial_index=1.1, cultural_lighting=1.05, lighting_efficiency=0.90),
    _city("Xi'an", 34.3416, 108.9398, 10_200_000, 8.3, 13, 115,
          elevation_m=405, industrial_index=1.08, cultural_lighting=1.12, lighting_efficiency=0.89),
    _city("Hangzhou", 30.2741, 120.1551, 10_360_000, 8.4, 13, 118,
          elevation_m=8, industrial_index=1.1, cultural_lighting=1.08, lighting_efficiency=0.93),
    _city("Nanjing", 32.0603, 118.7969, 8_505_000, 8.2, 12, 110,
          elevation_m=9, industrial_index=1.09, cultural_lighting=1.1, lighting_efficiency=0.91),
    _city("Zhengzhou", 34.7466, 113.6254, 10_140_000, 8.3, 13, 115,
          elevation_m=110, industrial_index=1.11, cultural_lighting=1.04, lighting_efficiency=0.88),
    _city("Shenyang", 41.8057, 123.4328, 8_294_000, 8.1, 12, 108,
          elevation_m=41, industrial_index=1.13, cultural_lighting=1.02, lighting_efficiency=0.87),
    # China, provincial capitals
    _city("Kunming", 24.8796, 102.8329, 6_950_000, 7.8, 11, 95,
          elevation_m=1891, industrial_index=1.05, cultural_lighting=1.03, lighting_efficiency=0.90),
    _city("Harbin", 45.8038, 126.5345, 10_635_000, 8.0, 12, 105,
          elevation_m=151, industrial_index=1.08, cultural_lighting=1.01, lighting_efficiency=0.86),
    _city("Changchun", 43.8171, 125.3235, 7_677_000, 7.9, 11, 100,
          elevation_m=237, industrial_index=1.1, cultural_lighting=1.0, lighting_efficiency=0.85),
    _city("Urumqi", 43.8256, 87.6168, 3_500_000, 7.5, 9, 85,
          elevation_m=918, industrial_index=1.06, cultural_lighting=1.02, lighting_efficiency=0.87),
    # High-altitude towns
    _city("Lhasa Downtown", 29.6500, 91.1000, 300_000, 7.0, 6, 70,
          elevation_m=3656, industrial_index=0.85, cultural_lighting=0.95, lighting_efficiency=0.88),
    _city("Lhasa Urban Area", 29.6500, 91.1000, 550_000, 6.5, 15, 90,
          elevation_m=3656, industrial_index=0.85, cultural_lighting=0.95, lighting_efficiency=0.88),
    _city("Shigatse", 29.2667, 88.8833, 100_000, 6.2, 5, 60,
          elevation_m=3836, industrial_index=0.80, cultural_lighting=0.93, lighting_efficiency=0.85),
    _city("Nyingchi", 29.6490, 94.3613, 80_000, 5.8, 4, 50,
          elevation_m=2900, industrial_index=0.75, cultural_lighting=0.92, lighting_efficiency=0.86),
    # Special administrative regions
    _city("Hong Kong Central", 22.3193, 114.1694, 7_500_000, 9.0, 10, 80,
          elevation_m=5, coastal_factor=1.25, industrial_index=1.15, lighting_efficiency=0.96),
    _city("Macau", 22.1987, 113.5439, 680_000, 8.5, 5, 45,
          elevation_m=2, coastal_factor=1.2, industrial_index=1.1, lighting_efficiency=0.95),
    # Global megacities
    _city("Tokyo", 35.6762, 139.6503, 37_400_000, 9.0, 25, 180,
          elevation_m=40, coastal_factor=1.15, industrial_index=1.2, lighting_efficiency=0.97),
    _city("Seoul", 37.5665, 126.9780, 25_600_000, 9.0, 20, 160,
          elevation_m=38, industrial_index=1.18, cultural_lighting=1.15, lighting_efficiency=0.96),
    _city("New York City", 40.7128, -74.0060, 20_140_000, 9.0, 18, 155,
          elevation_m=10, coastal_factor=1.1, industrial_index=1.15, lighting_efficiency=0.91),
    _city("Los Angeles", 34.0522, -118.2437, 13_200_000, 8.8, 20, 170,
          elevation_m=71, coastal_factor=1.05, industrial_index=1.12, lighting_efficiency=0.89),
    _city("London", 51.5074, -0.1278, 9_300_000, 8.7, 16, 135,
          elevation_m=11, industrial_index=1.1, cultural_lighting=1.05, lighting_efficiency=0.93),
    _city("Paris", 48.8566, 2.3522, 11_020_000, 8.8, 14, 125,
          elevation_m=35, industrial_index=1.08, cultural_lighting=1.12, lighting_efficiency=0.92),
    _city("Delhi", 28.7041, 77.1025, 30_290_000, 9.0, 22, 165,
          elevation_m=216, industrial_index=1.1, cultural_lighting=1.08, lighting_efficiency=0.82),
    _city("Mumbai", 19.0760, 72.8777, 20_410_000, 8.9, 18, 145,
          elevation_m=14, coastal_factor=1.18, industrial_index=1.12, lighting_efficiency=0.81),
)
