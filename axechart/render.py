"""Chart rendering to PNG using matplotlib."""

import io
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import numpy as np

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for server use
import matplotlib.pyplot as plt
import matplotlib.dates as mdates
from matplotlib.figure import Figure
from matplotlib.ticker import MaxNLocator, MultipleLocator

from .channels import Channel
from .config import RenderConfig
from .pipeline import RenderFrame

logger = logging.getLogger(__name__)

HS_PER_THS = 1e12

# Dataset colors (work on dark backgrounds)
CHANNEL_COLORS = {
    Channel.HASHRATE_1M: '#3498DB',   # Blue
    Channel.HASHRATE_10M: '#1ABC9C',  # Teal
    Channel.HASHRATE_1H: '#9B59B6',   # Purple
    Channel.HASHRATE_1D: '#F39C12',   # Orange
    Channel.VREG_TEMP: '#E74C3C',     # Red
    Channel.ASIC_TEMP: '#2ECC71',     # Green
}

CHANNEL_LABELS = {
    Channel.HASHRATE_1M: 'Hashrate 1m',
    Channel.HASHRATE_10M: 'Hashrate 10m',
    Channel.HASHRATE_1H: 'Hashrate 1h',
    Channel.HASHRATE_1D: 'Hashrate 1d',
    Channel.VREG_TEMP: 'VR Temp',
    Channel.ASIC_TEMP: 'ASIC Temp',
}


def _apply_scale(ax, scale: Optional[Dict], factor: float = 1.0):
    """Apply a ``{"min", "max", "ticks": {...}}`` scale dict to an axis."""
    if not scale:
        return
    if "min" in scale and "max" in scale:
        ax.set_ylim(scale["min"] / factor, scale["max"] / factor)
    ticks = scale.get("ticks", {})
    if ticks.get("stepSize"):
        ax.yaxis.set_major_locator(MultipleLocator(ticks["stepSize"] / factor))
    elif ticks.get("maxTicksLimit"):
        ax.yaxis.set_major_locator(MaxNLocator(nbins=ticks["maxTicksLimit"]))


class ChartRenderer:
    """Draw a RenderFrame: hashrate on the left axis, temperatures on the right."""

    def __init__(self, config: Optional[RenderConfig] = None):
        """Initialize renderer.

        Args:
            config: Rendering configuration
        """
        self.config = config or RenderConfig()
        self.dpi = self.config.dpi
        self.figsize = tuple(self.config.figsize)
        self.style = self.config.style

    def _configure_plot_style(self):
        """Apply consistent styling to matplotlib plots."""
        plt.style.use(self.style)
        plt.rcParams.update({
            'font.size': 10,
            'axes.labelsize': 11,
            'xtick.labelsize': 9,
            'ytick.labelsize': 9,
            'legend.fontsize': 9,
            'grid.alpha': 0.3,
            'grid.linestyle': '--',
        })

    def _save_figure_to_bytes(self, fig: Figure) -> bytes:
        """Save matplotlib figure to bytes buffer.

        Args:
            fig: Matplotlib figure

        Returns:
            PNG image as bytes
        """
        buf = io.BytesIO()
        fig.savefig(buf, format='png', dpi=self.dpi, bbox_inches='tight')
        buf.seek(0)
        image_bytes = buf.read()
        buf.close()
        plt.close(fig)
        return image_bytes

    def render(self, frame: RenderFrame) -> bytes:
        """Render one frame.

        Args:
            frame: Frame computed by ChartPipeline.render_frame

        Returns:
            PNG image as bytes
        """
        self._configure_plot_style()

        times = [datetime.fromtimestamp(t / 1000) for t in frame.labels]
        fig, ax_hash = plt.subplots(figsize=self.figsize)
        ax_temp = ax_hash.twinx()

        for channel in (Channel.HASHRATE_1D, Channel.HASHRATE_1H, Channel.HASHRATE_10M):
            if not frame.visibility[channel]:
                continue
            values = np.asarray(frame.series[channel], dtype=float) / HS_PER_THS
            ax_hash.plot(times, values, '-', color=CHANNEL_COLORS[channel], linewidth=1.5,
                         label=CHANNEL_LABELS[channel], alpha=0.8)

        if frame.visibility[Channel.HASHRATE_1M]:
            values = np.asarray(frame.hashrate_1m.data, dtype=float) / HS_PER_THS
            ax_hash.plot(times, values, '-', color=CHANNEL_COLORS[Channel.HASHRATE_1M],
                         linewidth=2.5, label=CHANNEL_LABELS[Channel.HASHRATE_1M], alpha=0.95)

        for channel in (Channel.VREG_TEMP, Channel.ASIC_TEMP):
            if not frame.visibility[channel]:
                continue
            ax_temp.plot(times, frame.series[channel], '-', color=CHANNEL_COLORS[channel],
                         linewidth=1.2, label=CHANNEL_LABELS[channel], alpha=0.7)

        if frame.live_hashrate_hs:
            ax_hash.axhline(y=frame.live_hashrate_hs / HS_PER_THS, color='white', linestyle=':',
                            linewidth=1, alpha=0.5, label='Live')

        scales = frame.options.get("scales", {})
        _apply_scale(ax_hash, scales.get("y"), HS_PER_THS)
        _apply_scale(ax_temp, scales.get("y_temp"))

        ax_hash.set_xlim(datetime.fromtimestamp(frame.x_min_ms / 1000),
                         datetime.fromtimestamp(frame.x_max_ms / 1000))
        ax_hash.xaxis.set_major_formatter(mdates.DateFormatter('%H:%M'))

        ax_hash.set_xlabel('Time')
        ax_hash.set_ylabel('Hashrate (TH/s)')
        ax_temp.set_ylabel('Temperature (°C)')
        ax_hash.grid(True, alpha=0.3)

        handles, labels = ax_hash.get_legend_handles_labels()
        temp_handles, temp_labels = ax_temp.get_legend_handles_labels()
        if handles or temp_handles:
            ax_hash.legend(handles + temp_handles, labels + temp_labels,
                           loc='upper left', framealpha=0.8)

        if frame.zoom_label:
            ax_hash.set_title(frame.zoom_label, loc='right')

        fig.tight_layout()
        return self._save_figure_to_bytes(fig)

    def save(self, frame: RenderFrame, output_path: Optional[str] = None) -> Path:
        """Render a frame and write it to disk."""
        path = Path(output_path or self.config.output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.render(frame))
        logger.debug(f"Chart written to {path}")
        return path
