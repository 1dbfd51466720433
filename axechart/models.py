"""Data models for AxeOS API responses, persisted chart state and axis bounds."""

import math
from typing import ClassVar, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HistoryBatch(BaseModel):
    """Chunk of device history as returned inside /api/system/info.

    Hashrates are hundredths of GH/s, temperatures hundredths of °C,
    timestamps are offsets relative to ``timestampBase``.
    """

    model_config = ConfigDict(populate_by_name=True)

    timestampBase: int = Field(0, alias="timestampBase")
    timestamps: List[float] = Field(default_factory=list)
    hashrate_1m: List[float] = Field(default_factory=list)
    hashrate_10m: List[float] = Field(default_factory=list)
    hashrate_1h: List[float] = Field(default_factory=list)
    hashrate_1d: List[float] = Field(default_factory=list)
    vregTemp: List[float] = Field(default_factory=list, alias="vregTemp")
    asicTemp: List[float] = Field(default_factory=list, alias="asicTemp")

    @field_validator(
        'timestamps', 'hashrate_1m', 'hashrate_10m', 'hashrate_1h',
        'hashrate_1d', 'vregTemp', 'asicTemp', mode='before'
    )
    @classmethod
    def parse_series(cls, v) -> List[float]:
        """Accept null/garbage entries; they become NaN instead of failing the batch."""
        if not isinstance(v, list):
            return []
        out = []
        for x in v:
            try:
                out.append(float(x))
            except (TypeError, ValueError):
                out.append(math.nan)
        return out

    @field_validator('timestampBase', mode='before')
    @classmethod
    def parse_base(cls, v) -> int:
        try:
            return int(v)
        except (TypeError, ValueError):
            return 0


class PoolStats(BaseModel):
    connected: bool = False
    accepted: int = 0
    rejected: int = 0


class StratumInfo(BaseModel):
    pools: List[PoolStats] = Field(default_factory=list)
    poolBalance: float = Field(100.0, alias="poolBalance")
    usingFallback: bool = Field(False, alias="usingFallback")

    model_config = ConfigDict(populate_by_name=True)


class SystemInfo(BaseModel):
    """System information from /api/system/info endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    hashRate: float = Field(0.0, alias="hashRate")  # GH/s
    frequency: float = 0.0
    smallCoreCount: int = Field(0, alias="smallCoreCount")
    asicCount: int = Field(0, alias="asicCount")

    # Thermal Monitoring
    temp: Optional[float] = None
    vrTemp: Optional[float] = Field(None, alias="vrTemp")

    stratum: Optional[StratumInfo] = None
    history: Optional[HistoryBatch] = None

    def active_balance(self, i: int) -> float:
        """Share (%) of the hashrate going to pool ``i``."""
        if self.stratum is None or not self.stratum.pools:
            return 100.0 if i == 0 else 0.0

        connected = [p.connected for p in self.stratum.pools] + [False, False]
        balance = self.stratum.poolBalance

        if not connected[0] and not connected[1]:
            return 0.0
        if connected[0] and connected[1]:
            return balance if i == 0 else 100.0 - balance
        return 100.0 if connected[i] else 0.0

    def pool_hashrate(self, i: int) -> float:
        """Hashrate (GH/s) attributed to pool ``i``."""
        return self.hashRate * self.active_balance(i) / 100.0

    def pool_hashrate_hs_sum(self) -> float:
        """Live pool hashrate sum in H/s (0 when nothing is hashing)."""
        total_gh = 0.0
        for i in (0, 1):
            v = self.pool_hashrate(i)
            if math.isfinite(v):
                total_gh += v
        if not math.isfinite(total_gh) or total_gh <= 0:
            return 0.0
        return total_gh * 1e9

    def expected_hashrate_hs(self) -> float:
        """Expected hashrate in H/s from frequency and core counts."""
        try:
            expected_gh = math.floor(self.frequency * (self.smallCoreCount * self.asicCount) / 1000)
        except (TypeError, ValueError, OverflowError):
            return 0.0
        return expected_gh * 1e9 if expected_gh > 0 else 0.0


class AxisBounds(BaseModel):
    """Min/max (and optional tick hints) for one chart axis."""
    min: float
    max: float
    stepSize: Optional[float] = None
    maxTicksLimit: Optional[int] = None


class ComputedAxisBounds(BaseModel):
    hashrate: Optional[AxisBounds] = None
    temperature: Optional[AxisBounds] = None


class PersistedChartState(BaseModel):
    """Schema 1 of the persisted chart series."""
    schema_: int = Field(1, alias="schema")
    labels: List[float] = Field(default_factory=list)
    dataData1m: List[float] = Field(default_factory=list)
    dataData10m: List[float] = Field(default_factory=list)
    dataData1h: List[float] = Field(default_factory=list)
    dataData1d: List[float] = Field(default_factory=list)
    dataVregTemp: List[float] = Field(default_factory=list)
    dataAsicTemp: List[float] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    SERIES_FIELDS: ClassVar[Tuple[str, ...]] = (
        'dataData1m', 'dataData10m', 'dataData1h',
        'dataData1d', 'dataVregTemp', 'dataAsicTemp',
    )

    def series(self) -> List[List[float]]:
        """Channel series in Channel order."""
        return [getattr(self, name) for name in self.SERIES_FIELDS]
