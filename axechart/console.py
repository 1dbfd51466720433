"""Rich terminal status panel for the chart monitor."""

import math
from datetime import datetime
from typing import Optional, Sequence

from rich.panel import Panel
from rich.table import Table

from .channels import Channel
from .pipeline import ChartPipeline, RenderFrame
from .warmup import WarmupStage

HS_PER_THS = 1e12
BLOCKS = ['▁', '▂', '▃', '▄', '▅', '▆', '▇', '█']

STAGE_COLORS = {
    WarmupStage.LOCKED: "red",
    WarmupStage.VREG_WAIT: "yellow",
    WarmupStage.ASIC_WAIT: "yellow",
    WarmupStage.HASH1M_WAIT: "yellow",
    WarmupStage.READY: "green",
}


def create_sparkline(values: Sequence[float], width: int = 40) -> str:
    """Create a sparkline from a series; NaN gaps render as spaces.

    Args:
        values: Series values
        width: Width of the sparkline in characters

    Returns:
        String with block characters representing the trend
    """
    if not values or len(values) < 2:
        return "[dim]No data[/dim]"

    # Sample data to fit width (take evenly spaced samples)
    if len(values) > width:
        step = len(values) / width
        sampled = [values[int(i * step)] for i in range(width)]
    else:
        sampled = list(values)

    finite = [v for v in sampled if math.isfinite(v)]
    if not finite:
        return "[dim]No data[/dim]"

    lo = min(finite)
    span = max(finite) - lo
    if span == 0:
        return "".join("─" if math.isfinite(v) else " " for v in sampled)

    graph = ""
    for value in sampled:
        if not math.isfinite(value):
            graph += " "
            continue
        block_idx = min(int((value - lo) / span * 8), 7)
        graph += BLOCKS[block_idx]
    return graph


def _fmt_ths(v: Optional[float]) -> str:
    if v is None or not math.isfinite(v):
        return "[dim]--[/dim]"
    return f"{v / HS_PER_THS:.3f} TH/s"


def _fmt_temp(v: Optional[float]) -> str:
    if v is None or not math.isfinite(v):
        return "[dim]--[/dim]"
    return f"{v:.1f}°C"


def create_status_panel(pipeline: ChartPipeline, frame: RenderFrame, device_name: str = "device",
                        width: int = 40) -> Panel:
    """Build the status panel for one frame.

    Args:
        pipeline: Pipeline (read-only use)
        frame: Latest render frame
        device_name: Title shown on the panel
        width: Sparkline width

    Returns:
        Rich Panel
    """
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold", width=14)
    table.add_column()

    stage = pipeline.warmup.stage
    color = STAGE_COLORS[stage]
    table.add_row("Warmup:", f"[{color}]{stage.value}[/{color}]")
    table.add_row("Live:", _fmt_ths(frame.live_hashrate_hs))
    table.add_row("Expected:", _fmt_ths(pipeline.expected_hashrate_hs or None))

    hr1m = frame.series[Channel.HASHRATE_1M]
    last_1m = next((v for v in reversed(hr1m) if math.isfinite(v)), None)
    table.add_row("Hashrate 1m:", f"[cyan]{_fmt_ths(last_1m)}[/cyan]")
    table.add_row("Trend:", f"[cyan]{create_sparkline(frame.hashrate_1m.data, width)}[/cyan]")
    flow = pipeline.warmup.timers
    if flow.hr1m_flow_last_ms is not None:
        since = datetime.fromtimestamp(flow.hr1m_flow_first_ms / 1000).strftime("%H:%M:%S")
        latest = datetime.fromtimestamp(flow.hr1m_flow_last_ms / 1000).strftime("%H:%M:%S")
        table.add_row("1m flow:", f"{since} .. {latest}")

    for channel, label in ((Channel.VREG_TEMP, "VR Temp:"), (Channel.ASIC_TEMP, "ASIC Temp:")):
        values = frame.series[channel]
        last = next((v for v in reversed(values) if math.isfinite(v)), None)
        table.add_row(label, _fmt_temp(last))

    hb = frame.bounds.hashrate
    if hb is not None:
        table.add_row("Y axis:", f"{hb.min / HS_PER_THS:.3f} .. {hb.max / HS_PER_THS:.3f} TH/s")
    tb = frame.bounds.temperature
    if tb is not None:
        table.add_row("Temp axis:", f"{tb.min:.1f} .. {tb.max:.1f}°C")

    table.add_row("Samples:", f"{len(frame.labels):,}")
    if frame.zoom_label:
        table.add_row("Window:", frame.zoom_label)

    border = "green" if stage is WarmupStage.READY else "yellow"
    return Panel(
        table,
        title=f"[cyan]{device_name}[/cyan] [dim]{datetime.now().strftime('%H:%M:%S')}[/dim]",
        border_style=border,
    )
