from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Callable

import pytest
from PIL import Image

from storewatch.checks.failures import FailureTracker
from storewatch.checks.pipeline import VisualCheckPipeline
from storewatch.config import WatchConfig
from storewatch.diffing.image_diff import ImageDiffEngine
from storewatch.storage.artifacts import LocalArtifactStore
from storewatch.storage.database import StoreRepository


def _make_png(
    width: int = 100,
    height: int = 10,
    color: tuple[int, int, int] = (255, 255, 255),
    changed: int = 0,
    change_color: tuple[int, int, int] = (0, 0, 0),
) -> bytes:
    img = Image.new("RGB", (width, height), color)
    pixels = img.load()
    for i in range(changed):
        pixels[i % width, i // width] = change_color
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


class FakeRenderer:
    """Returns queued captures (bytes) or raises queued exceptions."""

    def __init__(self, results: list[Any] | None = None) -> None:
        self.results = list(results or [])
        self.requests: list[Any] = []
        self.started = 0
        self.stopped = 0

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        self.started += 1

    async def stop(self) -> None:
        self.stopped += 1

    async def capture(self, request: Any) -> bytes:
        self.requests.append(request)
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[Any, Any]] = []

    async def notify(self, alert: Any, store: Any) -> bool:
        self.sent.append((alert, store))
        return True


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    return _make_png


@pytest.fixture
def repository(tmp_path: Path):
    repo = StoreRepository(str(tmp_path / "storewatch.db"))
    yield repo
    repo.close()


@pytest.fixture
def artifacts(tmp_path: Path) -> LocalArtifactStore:
    return LocalArtifactStore(tmp_path / "artifacts", base_url="https://cdn.example.test/shots")


@pytest.fixture
def config() -> WatchConfig:
    return WatchConfig(store_delay_seconds=0, capture_settle_seconds=0)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def build_pipeline(repository: StoreRepository, artifacts: LocalArtifactStore, notifier: FakeNotifier):
    def _build(renderer: FakeRenderer, config: WatchConfig | None = None) -> VisualCheckPipeline:
        cfg = config or WatchConfig(capture_settle_seconds=0)
        engine = ImageDiffEngine(
            diff_threshold_percent=cfg.diff_threshold_percent,
            pixel_threshold=cfg.pixel_threshold,
            artifacts=artifacts,
        )
        failures = FailureTracker(repository, max_failures=cfg.max_failures_before_inactive)
        return VisualCheckPipeline(cfg, repository, artifacts, renderer, engine, failures, notifier)

    return _build


@pytest.fixture
def fake_renderer() -> Callable[..., FakeRenderer]:
    return FakeRenderer
