from rich.console import Console
from rich.panel import Panel

from axechart.config import RenderConfig
from axechart.console import create_sparkline, create_status_panel
from axechart.pipeline import ChartPipeline
from axechart.render import ChartRenderer

from builders import BASE_MS, healthy_info, make_batch

NOW = BASE_MS + 60_000
PNG_MAGIC = b'\x89PNG'


def _frame(pipeline: ChartPipeline, **kwargs):
    pipeline.observe_live(NOW, healthy_info())
    pipeline.import_history(make_batch(10), importing=True)
    return pipeline.render_frame(NOW, **kwargs)


def test_render_returns_png(pipeline) -> None:
    image = ChartRenderer(RenderConfig(dpi=50, figsize=[6, 3])).render(_frame(pipeline))
    assert image.startswith(PNG_MAGIC)


def test_render_all_series_visible(pipeline) -> None:
    frame = _frame(pipeline, visibility=[True] * 6, window_ms=3 * 3_600_000)
    image = ChartRenderer(RenderConfig(dpi=50, figsize=[6, 3])).render(frame)
    assert image.startswith(PNG_MAGIC)


def test_render_empty_frame() -> None:
    frame = ChartPipeline().render_frame(NOW)
    assert ChartRenderer(RenderConfig(dpi=50)).render(frame).startswith(PNG_MAGIC)


def test_save_writes_file(pipeline, tmp_path) -> None:
    path = ChartRenderer(RenderConfig(dpi=50)).save(_frame(pipeline), str(tmp_path / "out" / "chart.png"))
    assert path.exists()
    assert path.read_bytes().startswith(PNG_MAGIC)


def test_sparkline() -> None:
    assert create_sparkline([]) == "[dim]No data[/dim]"
    assert create_sparkline([1.0]) == "[dim]No data[/dim]"
    assert create_sparkline([float("nan")] * 3) == "[dim]No data[/dim]"
    assert create_sparkline([1.0, 1.0]) == "──"

    line = create_sparkline([1.0, float("nan"), 2.0])
    assert line == "▁ █"


def test_sparkline_is_resampled_to_width() -> None:
    assert len(create_sparkline([float(i) for i in range(500)], width=40)) == 40


def test_status_panel(pipeline) -> None:
    frame = _frame(pipeline)
    panel = create_status_panel(pipeline, frame, "bitaxe-1")
    assert isinstance(panel, Panel)
    assert "bitaxe-1" in str(panel.title)


def _panel_text(panel: Panel) -> str:
    console = Console(record=True, width=100)
    console.print(panel)
    return console.export_text()


def test_status_panel_shows_1m_flow(pipeline) -> None:
    assert "1m flow:" not in _panel_text(create_status_panel(pipeline, pipeline.render_frame(NOW)))

    frame = _frame(pipeline)
    assert pipeline.warmup.timers.hr1m_flow_first_ms == BASE_MS
    assert "1m flow:" in _panel_text(create_status_panel(pipeline, frame))
