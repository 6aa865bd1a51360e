import asyncio
import base64
from unittest.mock import patch

import pytest

from sceneboard.errors import AssetError, BusyError, GenerationError, InvalidRequestError, SceneNotFoundError
from sceneboard.scenes import GenerationParams, JobKind, Scene, SceneOrchestrator, SceneStore
from sceneboard.scenes.models import AspectRatio, Style
from sceneboard.utils.image_process import Asset

from fake_backend import FakeBackend

PNG = "data:image/png;base64,iVBORw0KGgo="


def _orchestrator(backend, scenes=None, **kwargs):
    store = SceneStore()
    if scenes:
        store.replace_all(scenes)
    return SceneOrchestrator(store, backend, **kwargs)


def test_generate_all_scenes_one_scene_per_non_blank_line():
    backend = FakeBackend()
    orch = _orchestrator(backend)

    scenes = asyncio.run(orch.generate_all_scenes("A\nB\n\nC"))

    assert [(s.id, s.text) for s in scenes] == [(1, "A"), (2, "B"), (3, "C")]
    assert [s.id for s in orch.store.list()] == [1, 2, 3]
    assert all(s.video_url is None for s in scenes)
    assert [prompt for prompt, _ in backend.image_calls] == ["A", "B", "C"]


def test_generate_all_scenes_uses_given_params():
    backend = FakeBackend()
    orch = _orchestrator(backend)
    params = GenerationParams(style=Style.REALISTIC, aspect_ratio=AspectRatio.PORTRAIT)

    asyncio.run(orch.generate_all_scenes("only line", params))

    assert backend.image_calls[0][1] == params


def test_generate_all_scenes_failure_leaves_store_unchanged():
    backend = FakeBackend(fail_on={"B"})
    previous = [Scene(id=1, text="old", image_url=PNG)]
    orch = _orchestrator(backend, previous)
    seen = []
    orch.events.add_listener(seen.append)

    with pytest.raises(GenerationError) as exc_info:
        asyncio.run(orch.generate_all_scenes("A\nB\nC"))

    assert str(exc_info.value) == "Failed to generate scene 2"
    assert "model overloaded" in exc_info.value.details
    assert orch.store.list() == previous
    # aborted after the failing line
    assert [prompt for prompt, _ in backend.image_calls] == ["A", "B"]
    assert orch.generating is False
    assert seen[-1]["level"] == "error"


def test_generate_all_scenes_rejects_empty_script():
    orch = _orchestrator(FakeBackend())
    with pytest.raises(InvalidRequestError):
        asyncio.run(orch.generate_all_scenes(" \n\n "))


def test_generate_all_scenes_rejects_second_batch_while_running():
    async def scenario():
        backend = FakeBackend()
        backend.image_gate = asyncio.Event()
        orch = _orchestrator(backend)
        first = asyncio.create_task(orch.generate_all_scenes("A\nB"))
        await asyncio.sleep(0)
        with pytest.raises(BusyError):
            await orch.generate_all_scenes("C")
        backend.image_gate.set()
        return await first

    scenes = asyncio.run(scenario())
    assert len(scenes) == 2


def test_regenerate_replaces_image_and_clears_video():
    backend = FakeBackend()
    scene = Scene(id=1, text="A", image_url=PNG, video_url="https://cdn/old.mp4", last_animated="2024-01-01T00:00:00+00:00")
    other = Scene(id=2, text="B", image_url=PNG)
    orch = _orchestrator(backend, [scene, other])

    assert asyncio.run(orch.regenerate_scene(1)) is True

    updated = orch.store.get(1)
    assert updated.image_url != PNG
    assert updated.video_url is None
    assert updated.last_animated is None
    assert updated.text == "A"
    assert orch.store.get(2) == other
    assert not orch.jobs.is_scene_busy(1)


def test_regenerate_uses_current_params():
    backend = FakeBackend()
    orch = _orchestrator(backend, [Scene(id=1, text="A", image_url=PNG)])
    orch.params = GenerationParams(aspect_ratio=AspectRatio.SQUARE)

    asyncio.run(orch.regenerate_scene(1))

    assert backend.image_calls[0][1].aspect_ratio is AspectRatio.SQUARE


def test_regenerate_failure_keeps_scene_and_video():
    backend = FakeBackend(fail_on={"A"})
    scene = Scene(id=1, text="A", image_url=PNG, video_url="https://cdn/old.mp4", last_animated="t")
    orch = _orchestrator(backend, [scene])

    assert asyncio.run(orch.regenerate_scene(1)) is False

    assert orch.store.get(1) == scene
    assert "model overloaded" in orch.last_errors[(JobKind.REGENERATE, 1)]
    assert not orch.jobs.is_busy(JobKind.REGENERATE, 1)


def test_regenerate_reentry_is_noop_until_first_finishes():
    async def scenario():
        backend = FakeBackend()
        backend.image_gate = asyncio.Event()
        orch = _orchestrator(backend, [Scene(id=1, text="A", image_url=PNG)])

        first = asyncio.create_task(orch.regenerate_scene(1))
        await asyncio.sleep(0)
        assert orch.jobs.is_busy(JobKind.REGENERATE, 1)
        assert await orch.regenerate_scene(1) is False

        backend.image_gate.set()
        assert await first is True
        assert await orch.regenerate_scene(1) is True
        return backend

    backend = asyncio.run(scenario())
    assert len(backend.image_calls) == 2


def test_unknown_scene_raises_before_marking_busy():
    orch = _orchestrator(FakeBackend())
    with pytest.raises(SceneNotFoundError):
        asyncio.run(orch.regenerate_scene(42))
    with pytest.raises(SceneNotFoundError):
        asyncio.run(orch.animate_scene(42))
    assert not orch.jobs.is_scene_busy(42)


def test_animate_sets_video_and_keeps_image():
    backend = FakeBackend()
    orch = _orchestrator(backend, [Scene(id=1, text="A", image_url=PNG)])

    assert asyncio.run(orch.animate_scene(1)) is True

    scene = orch.store.get(1)
    assert scene.video_url == "https://cdn.example.com/clip.mp4"
    assert scene.last_animated is not None
    assert scene.image_url == PNG
    assert backend.animate_calls == [("A", PNG)]


def test_animate_inline_image_does_not_fetch_over_network():
    backend = FakeBackend()
    orch = _orchestrator(backend, [Scene(id=1, text="A", image_url=PNG)])

    with patch("sceneboard.utils.image_process.requests.get") as get:
        assert asyncio.run(orch.animate_scene(1)) is True

    get.assert_not_called()
    assert backend.animate_calls[0][1] == PNG


def test_animate_remote_image_is_sent_inline():
    fetched = []

    def fetcher(url):
        fetched.append(url)
        return Asset(content=b"\x89PNG", content_type="image/png")

    backend = FakeBackend()
    orch = _orchestrator(backend, [Scene(id=1, text="A", image_url="https://cdn.example.com/a.png")], fetcher=fetcher)

    assert asyncio.run(orch.animate_scene(1)) is True

    assert fetched == ["https://cdn.example.com/a.png"]
    assert backend.animate_calls[0][1] == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()


def test_animate_rejects_non_image_resource():
    backend = FakeBackend()
    scene = Scene(id=1, text="A", image_url="https://cdn.example.com/page")
    orch = _orchestrator(backend, [scene], fetcher=lambda url: Asset(content=b"<html>", content_type="text/html"))

    assert asyncio.run(orch.animate_scene(1)) is False

    assert backend.animate_calls == []
    assert orch.store.get(1) == scene
    assert "Invalid image for animation" in orch.last_errors[(JobKind.ANIMATE, 1)]
    assert not orch.jobs.is_busy(JobKind.ANIMATE, 1)


def test_animate_unfetchable_image_reports_error():
    def fetcher(url):
        raise AssetError("Download failed: 404")

    backend = FakeBackend()
    orch = _orchestrator(backend, [Scene(id=1, text="A", image_url="https://cdn.example.com/gone.png")], fetcher=fetcher)

    assert asyncio.run(orch.animate_scene(1)) is False
    assert backend.animate_calls == []


def test_animate_failure_keeps_existing_video():
    backend = FakeBackend(animate_error=GenerationError("No video URL returned from animation service"))
    scene = Scene(id=1, text="A", image_url=PNG, video_url="https://cdn/old.mp4", last_animated="t")
    orch = _orchestrator(backend, [scene])

    assert asyncio.run(orch.animate_scene(1)) is False
    assert orch.store.get(1) == scene


def test_animate_result_discarded_when_image_regenerated_meanwhile():
    async def scenario():
        backend = FakeBackend()
        backend.animate_gate = asyncio.Event()
        orch = _orchestrator(backend, [Scene(id=1, text="A", image_url=PNG)])

        animating = asyncio.create_task(orch.animate_scene(1))
        while not backend.animate_calls:
            await asyncio.sleep(0)
        assert await orch.regenerate_scene(1) is True
        backend.animate_gate.set()
        return orch, await animating

    orch, animated = asyncio.run(scenario())
    assert animated is False
    assert orch.store.get(1).video_url is None
    assert "image changed" in orch.last_errors[(JobKind.ANIMATE, 1)]


def test_submitted_task_runs_and_releases_marker():
    async def scenario():
        orch = _orchestrator(FakeBackend(), [Scene(id=1, text="A", image_url=PNG)])
        task = orch.submit(JobKind.ANIMATE, 1)
        assert orch.submit(JobKind.ANIMATE, 1) is None
        result = await task
        await asyncio.sleep(0)
        return orch, result

    orch, result = asyncio.run(scenario())
    assert result is True
    assert not orch.jobs.is_scene_busy(1)
    assert orch.running_task(JobKind.ANIMATE, 1) is None


def test_cancel_in_flight_task_releases_marker_and_keeps_scene():
    async def scenario():
        backend = FakeBackend()
        backend.image_gate = asyncio.Event()
        scene = Scene(id=1, text="A", image_url=PNG)
        orch = _orchestrator(backend, [scene])

        task = orch.submit(JobKind.REGENERATE, 1)
        while not backend.image_calls:
            await asyncio.sleep(0)
        assert orch.cancel(JobKind.REGENERATE, 1) is True
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        return orch, scene

    orch, scene = asyncio.run(scenario())
    assert not orch.jobs.is_busy(JobKind.REGENERATE, 1)
    assert orch.store.get(1) == scene


def test_cancel_before_task_starts_still_releases_marker():
    async def scenario():
        orch = _orchestrator(FakeBackend(), [Scene(id=1, text="A", image_url=PNG)])
        task = orch.submit(JobKind.ANIMATE, 1)
        orch.cancel(JobKind.ANIMATE, 1)
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        return orch

    orch = asyncio.run(scenario())
    assert not orch.jobs.is_busy(JobKind.ANIMATE, 1)
    assert orch.cancel(JobKind.ANIMATE, 1) is False


def test_regenerate_and_animate_on_different_scenes_run_concurrently():
    async def scenario():
        backend = FakeBackend()
        backend.image_gate = asyncio.Event()
        orch = _orchestrator(backend, [Scene(id=1, text="A", image_url=PNG), Scene(id=2, text="B", image_url=PNG)])

        regen = orch.submit(JobKind.REGENERATE, 1)
        animated = await orch.animate_scene(2)
        backend.image_gate.set()
        return orch, animated, await regen

    orch, animated, regenerated = asyncio.run(scenario())
    assert animated is True and regenerated is True
    assert orch.store.get(2).video_url is not None


def test_regenerate_result_dropped_when_board_replaced_with_same_text():
    async def scenario():
        backend = FakeBackend()
        backend.image_gate = asyncio.Event()
        orch = _orchestrator(backend, [Scene(id=1, text="A", image_url=PNG)])

        regenerating = asyncio.create_task(orch.regenerate_scene(1))
        while not backend.image_calls:
            await asyncio.sleep(0)
        fresh = Scene(id=1, text="A", image_url="data:image/webp;base64,Tg==")
        orch.store.clear()
        orch.store.replace_all([fresh])
        backend.image_gate.set()
        return orch, fresh, await regenerating

    orch, fresh, regenerated = asyncio.run(scenario())
    assert regenerated is False
    assert orch.store.get(1) == fresh
    assert "scene was replaced" in orch.last_errors[(JobKind.REGENERATE, 1)]


def test_animate_result_dropped_when_board_replaced_with_same_image():
    async def scenario():
        backend = FakeBackend()
        backend.animate_gate = asyncio.Event()
        orch = _orchestrator(backend, [Scene(id=1, text="A", image_url=PNG)])

        animating = asyncio.create_task(orch.animate_scene(1))
        while not backend.animate_calls:
            await asyncio.sleep(0)
        fresh = Scene(id=1, text="A", image_url=PNG)
        orch.store.replace_all([fresh])
        backend.animate_gate.set()
        return orch, fresh, await animating

    orch, fresh, animated = asyncio.run(scenario())
    assert animated is False
    assert orch.store.get(1) == fresh
