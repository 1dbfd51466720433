import pytest

from axechart.config import PipelineConfig
from axechart.pipeline import ChartPipeline
from axechart.storage import ChartStorage, MemoryKeyValueStore


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def storage(store) -> ChartStorage:
    return ChartStorage(store)


@pytest.fixture
def pipeline(config, storage) -> ChartPipeline:
    p = ChartPipeline(config, storage)
    p.load_persisted()
    return p
