"""Chart pipeline configuration."""

from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from .channels import Channel


class SanitizeConfig(BaseModel):
    """Raw-sample range validation (invalid samples become NaN)."""
    temp_min_c: float = 0.1  # 0°C is a boot/sensor artifact on these miners
    temp_max_c: float = 130.0
    hashrate_min_hs: float = 1.0


class WarmupConfig(BaseModel):
    """Restart sequencing so curves are cut instead of falling to zero."""
    temp_min_valid_c: float = 10.0  # boot sensor junk reads 0..9°C
    temp_max_valid_c: float = 130.0
    vreg_delay_ms: int = 1337
    asic_delay_ms: int = 750
    hash1m_delay_ms: int = 250
    restart_detect_streak: int = 1


class GraphGuardTuning(BaseModel):
    """GraphGuard core behavior."""
    confirm_samples: int = 2
    live_ref_tolerance: float = 0.06
    big_step_rel: float = 0.20
    live_ref_stable_samples: int = 2
    live_ref_stable_rel: float = 0.05
    min_valid: float = 1.0
    temp_ceiling_c: float = 120.0


class GraphGuardThresholds(BaseModel):
    """Per-channel relative step thresholds."""
    hashrate_1m: float = 0.01
    hashrate_10m: float = 0.02
    hashrate_1h: float = 0.08
    hashrate_1d: float = 0.10
    vreg_temp: float = 0.35
    asic_temp: float = 0.35

    def for_channel(self, channel: Channel) -> float:
        return [
            self.hashrate_1m,
            self.hashrate_10m,
            self.hashrate_1h,
            self.hashrate_1d,
            self.vreg_temp,
            self.asic_temp,
        ][channel]


class GraphGuardConfig(BaseModel):
    cfg: GraphGuardTuning = Field(default_factory=GraphGuardTuning)
    thresholds: GraphGuardThresholds = Field(default_factory=GraphGuardThresholds)
    enable_hashrate_spike_guard: bool = True


class HashratePadding(BaseModel):
    pad_pct: float = 0.06
    pad_pct_top: Optional[float] = 0.05
    pad_pct_bottom: Optional[float] = 0.07
    min_pad_ths: float = 0.03
    flat_pad_pct_of_max: float = 0.005
    max_pad_pct_of_max: float = 0.25


class AxisPaddingConfig(BaseModel):
    """Axis padding so lines don't stick to the chart frame."""
    hashrate: HashratePadding = Field(default_factory=HashratePadding)


class TickCountClamp(BaseModel):
    min: int = 2
    max: int = 30


class YAxisConfig(BaseModel):
    hashrate_max_ticks: int = 5
    hashrate_tick_count_clamp: TickCountClamp = Field(default_factory=TickCountClamp)
    hashrate_min_step_ths: float = 0.005
    hashrate_soft_include_rel: float = 0.05

    def clamp_tick_count(self, count: int) -> int:
        clamp = self.hashrate_tick_count_clamp
        return max(clamp.min, min(clamp.max, int(round(count))))


class TempScaleConfig(BaseModel):
    hysteresis_c: float = 1.0
    axis_min_pad_c: float = 1.0
    axis_max_pad_c: float = 2.0


class SmoothingConfig(BaseModel):
    """Rendering-only smoothing for the 1m hashrate dataset."""
    enabled: bool = True
    fast_interval_ms: int = 6000
    medium_interval_ms: int = 12000
    tension_fast: float = 0.45
    tension_medium: float = 0.18
    tension_slow: float = 0.12
    cubic_interpolation_mode: str = "monotone"
    median_window_points: int = 60
    zoom_boost_per_step: float = 0.08
    ema_window_ms_min: int = 0
    ema_window_ms_max: int = 180_000
    ema_window_ms_per_step: int = 20_000
    ema_min_points: int = 2
    ema_max_points: int = 120
    snap_last_point: bool = True

    @field_validator("cubic_interpolation_mode")
    @classmethod
    def check_mode(cls, v: str) -> str:
        if v not in ("monotone", "default"):
            raise ValueError("cubic_interpolation_mode must be 'monotone' or 'default'")
        return v


class ZoomConfig(BaseModel):
    """X-axis zoom limits (1h .. 3h in 15m steps by default)."""
    min_window_ms: int = 60 * 60 * 1000
    max_window_ms: int = 3 * 60 * 60 * 1000
    zoom_step_ms: int = 15 * 60 * 1000


class HistoryDrainConfig(BaseModel):
    render_throttle_ms: int = 500
    use_throttled_render: bool = True
    suppress_chart_updates_during_drain: bool = False
    chunk_size: int = 0


class StartupConfig(BaseModel):
    bypass_guard_samples: int = 0
    expected_unlock_ratio: float = 0.98
    hr1m_smooth_window_ms: int = 15_000
    hr1m_confirm_startup: int = 5
    hr1m_confirm_normal: int = 3
    hr1m_reload_after_smooth: bool = False
    hr1m_reload_cooldown_ms: int = 600_000


class StorageKeys(BaseModel):
    chart_data: str = "chartData_exp"
    last_timestamp: str = "lastTimestamp_exp"
    legend_visibility: str = "chartLegendVisibility_exp"
    view_mode: str = "tempViewMode_exp"
    min_history_timestamp_ms: str = "minHistoryTimestampMs_exp"


class StorageConfig(BaseModel):
    keys: StorageKeys = Field(default_factory=StorageKeys)
    max_persisted_points: int = 20000
    database_path: str = "./data/chart_state.db"


class UiDefaults(BaseModel):
    view_mode: str = "bars"
    # Chart convention: True means hidden.
    legend_hidden: List[bool] = Field(
        default_factory=lambda: [False, True, True, True, False, False]
    )


class DeviceConfig(BaseModel):
    name: str = "bitaxe"
    ip: str
    timeout: int = 10


class RenderConfig(BaseModel):
    enabled: bool = True
    output_path: str = "./data/chart.png"
    dpi: int = 120
    style: str = "dark_background"
    figsize: List[float] = Field(default_factory=lambda: [12, 6])


class PipelineConfig(BaseModel):
    """Complete configuration for the chart pipeline and monitor."""
    sanitize: SanitizeConfig = Field(default_factory=SanitizeConfig)
    warmup: WarmupConfig = Field(default_factory=WarmupConfig)
    graph_guard: GraphGuardConfig = Field(default_factory=GraphGuardConfig)
    axis_padding: AxisPaddingConfig = Field(default_factory=AxisPaddingConfig)
    y_axis: YAxisConfig = Field(default_factory=YAxisConfig)
    temp_scale: TempScaleConfig = Field(default_factory=TempScaleConfig)
    smoothing: SmoothingConfig = Field(default_factory=SmoothingConfig)
    zoom: ZoomConfig = Field(default_factory=ZoomConfig)
    history_drain: HistoryDrainConfig = Field(default_factory=HistoryDrainConfig)
    startup: StartupConfig = Field(default_factory=StartupConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    ui_defaults: UiDefaults = Field(default_factory=UiDefaults)
    render: RenderConfig = Field(default_factory=RenderConfig)
    device: Optional[DeviceConfig] = None
    poll_interval: float = 5.0

    @classmethod
    def from_yaml(cls, yaml_config: Optional[dict]) -> "PipelineConfig":
        """Create config from the ``chart`` section of config.yaml.

        Args:
            yaml_config: Chart section (may be None or empty)

        Returns:
            PipelineConfig instance
        """
        yaml_config = dict(yaml_config or {})

        # Accept a bare IP string for convenience
        device = yaml_config.get("device")
        if isinstance(device, str):
            yaml_config["device"] = {"ip": device}

        return cls(**yaml_config)
