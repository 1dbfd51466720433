"""Device history decoding and the serialized history drainer."""

import asyncio
import logging
import math
import time
from typing import Awaitable, Callable, List, Optional

from .channels import ALL_CHANNELS, Channel
from .config import HistoryDrainConfig
from .models import HistoryBatch
from .series import Sample

logger = logging.getLogger(__name__)

SECONDS_CUTOFF = 1_000_000_000_000
HASHRATE_SCALE = 1e9 / 100.0  # hundredths of GH/s -> H/s
TEMP_SCALE = 1 / 100.0        # hundredths of °C -> °C

_BATCH_FIELDS = {
    Channel.HASHRATE_1M: "hashrate_1m",
    Channel.HASHRATE_10M: "hashrate_10m",
    Channel.HASHRATE_1H: "hashrate_1h",
    Channel.HASHRATE_1D: "hashrate_1d",
    Channel.VREG_TEMP: "vregTemp",
    Channel.ASIC_TEMP: "asicTemp",
}


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_timestamp_ms(t: float) -> float:
    """Treat ``0 < t < 1e12`` as seconds (the API may send either)."""
    if 0 < t < SECONDS_CUTOFF:
        return t * 1000
    return t


def decode_history(batch: Optional[HistoryBatch]) -> List[Sample]:
    """Convert a raw history batch into samples sorted by timestamp.

    Only the first ``min(len(array))`` entries are used. Entries whose
    timestamp is not finite are dropped; value conversion never raises.
    """
    if batch is None:
        return []

    arrays = {ch: getattr(batch, name) for ch, name in _BATCH_FIELDS.items()}
    n = min([len(batch.timestamps)] + [len(values) for values in arrays.values()])
    if n <= 0:
        return []

    samples = []
    for i in range(n):
        ts = normalize_timestamp_ms(batch.timestamps[i] + batch.timestampBase)
        if not math.isfinite(ts):
            continue
        values = []
        for ch in ALL_CHANNELS:
            scale = HASHRATE_SCALE if ch.is_hashrate else TEMP_SCALE
            values.append(arrays[ch][i] * scale)
        samples.append(Sample(timestamp_ms=int(ts), values=values))

    samples.sort(key=lambda s: s.timestamp_ms)
    return samples


def get_history_oldest_timestamp_ms(batch: Optional[HistoryBatch]) -> Optional[float]:
    """Oldest absolute timestamp in a batch, or None when it has none."""
    if batch is None or not batch.timestamps:
        return None
    candidates = []
    for rel in batch.timestamps:
        ts = rel + batch.timestampBase
        if math.isfinite(ts):
            candidates.append(normalize_timestamp_ms(ts))
    return min(candidates) if candidates else None


FetchChunk = Callable[[Optional[int]], Awaitable[Optional[HistoryBatch]]]


class HistoryDrainer:
    """Pull history in chunks and feed it to the pipeline, one drain at a time.

    While draining, renders are throttled or suppressed (per config) and the
    chart is committed once at the end so a half-built series is never
    persisted.
    """

    def __init__(
        self,
        pipeline,
        fetch: FetchChunk,
        cfg: Optional[HistoryDrainConfig] = None,
        render: Optional[Callable[[], None]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize drainer.

        Args:
            pipeline: ChartPipeline receiving the chunks
            fetch: Coroutine fetching the chunk starting at a timestamp (ms)
            cfg: Drain configuration
            render: Called to redraw the chart
            clock: Millisecond clock
        """
        self.pipeline = pipeline
        self.fetch = fetch
        self.cfg = cfg or HistoryDrainConfig()
        self.render = render
        self.clock = clock
        self._lock = asyncio.Lock()
        self._stop_requested = False

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def stop(self) -> None:
        """Abort the running drain at the next chunk boundary."""
        self._stop_requested = True

    def _maybe_render(self, last_render_ms: int) -> int:
        if self.render is None or self.cfg.suppress_chart_updates_during_drain:
            return last_render_ms
        now = self.clock()
        if self.cfg.use_throttled_render and now - last_render_ms < self.cfg.render_throttle_ms:
            return last_render_ms
        self.render()
        return now

    async def drain(self, start_ms: Optional[int] = None) -> int:
        """Fetch and import history chunks until caught up.

        A request made while another drain is running is ignored.

        Args:
            start_ms: Timestamp to start from (None lets the device decide)

        Returns:
            Number of samples imported
        """
        if self._lock.locked():
            logger.debug("History drain already running, request ignored")
            return 0

        async with self._lock:
            self._stop_requested = False
            total = 0
            chunks = 0
            last_render = 0
            cursor = start_ms

            while not self._stop_requested:
                batch = await self.fetch(cursor)
                if batch is None or not batch.timestamps:
                    break
                chunks += 1

                before = self.pipeline.series.last_label()
                total += self.pipeline.import_history(batch, importing=True)
                after = self.pipeline.series.last_label()
                last_render = self._maybe_render(last_render)

                if after is None or after == before:
                    break
                if self.cfg.chunk_size <= 0 or len(batch.timestamps) < self.cfg.chunk_size:
                    break
                cursor = after + 1

            if self._stop_requested:
                logger.info(f"History drain stopped after {chunks} chunk(s)")
                return total

            self.pipeline.commit(self.clock())
            if self.render is not None:
                self.render()

        logger.info(f"History drain finished: {total} samples in {chunks} chunk(s)")
        return total
