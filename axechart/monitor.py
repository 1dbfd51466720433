"""Polling daemon that feeds one device into the chart pipeline."""

import asyncio
import logging
from typing import List, Optional

from rich.console import Console
from rich.live import Live

from .api_client import AxeOSClient
from .config import PipelineConfig
from .console import create_status_panel
from .history import HistoryDrainer, now_ms
from .models import HistoryBatch
from .pipeline import ChartPipeline, RenderFrame
from .render import ChartRenderer
from .storage import ChartStorage, SqliteKeyValueStore

logger = logging.getLogger(__name__)

RETRY_DELAY = 10


class ChartMonitor:
    """Poll a device, keep the chart pipeline current and redraw the chart."""

    def __init__(self, config: PipelineConfig, pipeline: Optional[ChartPipeline] = None,
                 renderer: Optional[ChartRenderer] = None):
        """Initialize monitor.

        Args:
            config: Complete configuration (``device`` must be set)
            pipeline: Pipeline to feed (built from config when omitted)
            renderer: PNG renderer (built from config when omitted)
        """
        if config.device is None:
            raise ValueError("No device configured")

        self.config = config
        self.device = config.device
        self.poll_interval = config.poll_interval

        if pipeline is None:
            store = SqliteKeyValueStore(config.storage.database_path)
            storage = ChartStorage(store, config.storage.keys, config.storage.max_persisted_points)
            pipeline = ChartPipeline(config, storage)
        self.pipeline = pipeline
        self.renderer = renderer or ChartRenderer(config.render)

        self.client: Optional[AxeOSClient] = None
        self.drainer = HistoryDrainer(self.pipeline, self._fetch_history, config.history_drain,
                                      render=self.render)
        self.window_ms = config.zoom.max_window_ms
        self.visibility: List[bool] = self.pipeline.default_visibility()

        self.running = False
        self.poll_count = 0
        self.last_frame: Optional[RenderFrame] = None
        self._tasks: List[asyncio.Task] = []
        self._live: Optional[Live] = None
        self._reloading = False
        self._sync_started = False

    async def _fetch_history(self, start_ms: Optional[int]) -> Optional[HistoryBatch]:
        return await self.client.get_history(
            start_ms, self.config.history_drain.chunk_size, self.config.zoom.max_window_ms
        )

    def _history_start_ms(self, now: int) -> int:
        last = self.pipeline.last_seen_timestamp_ms
        if last is None:
            return now - self.config.zoom.max_window_ms
        return int(last)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.append(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        if task in self._tasks:
            self._tasks.remove(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background history task failed: {task.exception()}")

    def load_preferences(self) -> None:
        """Apply stored legend visibility (True = hidden)."""
        if self.pipeline.storage is None:
            return
        prefs = self.pipeline.storage.load_ui_preferences(self.config.ui_defaults)
        self.visibility = [not hidden for hidden in prefs.legend_hidden]

    def render(self) -> RenderFrame:
        """Build a frame, write the PNG and refresh the console panel."""
        frame = self.pipeline.render_frame(now_ms(), self.window_ms, self.visibility)
        self.last_frame = frame
        if self.config.render.enabled:
            self.renderer.save(frame)
        if self._live is not None:
            self._live.update(create_status_panel(self.pipeline, frame, self.device.name))
        return frame

    async def initial_sync(self, start_ms: int) -> None:
        """Drain history since the last stored sample, then fill the zoom window if short."""
        await self.drainer.drain(start_ms)
        if self.pipeline.needs_history_expansion(now_ms()):
            await self.reload_history()

    async def reload_history(self) -> None:
        """Fetch the full zoom window and re-import it."""
        self._reloading = True
        try:
            start = now_ms() - self.config.zoom.max_window_ms
            batch = await self.client.get_history(start, self.config.history_drain.chunk_size,
                                                  self.config.zoom.max_window_ms)
        finally:
            self._reloading = False
        count = self.pipeline.reload_history(batch)
        self.pipeline.commit(now_ms())
        self.render()
        logger.info(f"History reload imported {count} samples")

    async def poll_once(self) -> int:
        """Run one polling cycle.

        Returns:
            Number of samples imported from the live poll
        """
        self.poll_count += 1
        now = now_ms()
        start = self._history_start_ms(now)

        info = await self.client.get_system_info(
            start, self.config.history_drain.chunk_size, self.config.zoom.max_window_ms
        )
        stage = self.pipeline.observe_live(now, info)
        logger.debug(f"Poll #{self.poll_count}: {info.hashRate:.1f} GH/s, warmup {stage.value}")

        imported = 0
        if not self._sync_started:
            self._sync_started = True
            self._spawn(self.initial_sync(start))
        elif not self.drainer.running and not self._reloading:
            # While a drain or reload runs it imports (and cuts) on its own
            imported = self.pipeline.import_history(info.history)
            self.pipeline.commit(now)
            self.render()

        self.pipeline.poll_deferred(now)
        if self.pipeline.take_reload_request() and not self.drainer.running and not self._reloading:
            self._spawn(self.reload_history())

        return imported

    async def run(self, dashboard: bool = False):
        """Main polling loop."""
        self.running = True
        logger.info("=" * 60)
        logger.info(f"Starting chart monitor for {self.device.name} ({self.device.ip})")
        logger.info(f"Poll interval: {self.poll_interval}s")
        logger.info("=" * 60)

        self.pipeline.load_persisted()
        self.load_preferences()

        live = Live(console=Console(), refresh_per_second=1) if dashboard else None
        try:
            async with AxeOSClient(self.device.ip, self.device.timeout) as client:
                self.client = client
                if live is not None:
                    live.start()
                    self._live = live

                while self.running:
                    try:
                        await self.poll_once()
                        await asyncio.sleep(self.poll_interval)

                    except Exception as e:
                        logger.error(f"Error in main loop: {e}", exc_info=True)
                        logger.info(f"Waiting {RETRY_DELAY} seconds before retry...")
                        await asyncio.sleep(RETRY_DELAY)
        finally:
            self.drainer.stop()
            for task in list(self._tasks):
                task.cancel()
            if live is not None:
                live.stop()
                self._live = None
            self.pipeline.commit(now_ms())
            logger.info("Chart monitor stopped")

    def stop(self):
        """Stop the monitor."""
        self.running = False
