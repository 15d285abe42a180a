"""Unit tests for ContainerBackend.

Docker and the registry are replaced by the in-memory fakes from tests.fakes.
"""

from __future__ import annotations

import asyncio
import json

import pytest
import aiohttp
from aiodocker.exceptions import DockerError

from selenoid_cm.backends.docker import (
    CONTAINER_CONFIG_DIR,
    SERVICE_CONTAINER_NAME,
    ContainerBackend,
    browser_path,
    image_with_tag,
)
from selenoid_cm.errors import (
    FetchError,
    InitializationError,
    InvariantViolationError,
    StartError,
    StopError,
)
from selenoid_cm.models import ResolvedArtifact
from tests.fakes import FakeDocker, FakeRegistry

TAGS = {
    "aerokube/selenoid": ["1.9.0", "1.10.0", "latest"],
    "selenoid/firefox": ["45.0", "46.0", "7.0", "latest"],
    "selenoid/chrome": ["46.0", "45.0"],
    "selenoid/opera": ["12.16", "33.0"],
}


@pytest.fixture
def docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry(TAGS)


@pytest.fixture
def make_backend(make_config, docker, registry):
    def factory(**overrides) -> ContainerBackend:
        return ContainerBackend(make_config(**overrides), docker=docker, registry=registry)

    return factory


class TestHelpers:
    def test_image_with_tag(self):
        assert image_with_tag("selenoid/chrome", "46.0") == "selenoid/chrome:46.0"

    @pytest.mark.parametrize(
        ("browser", "tag", "expected"),
        [
            ("firefox", "46.0", "/wd/hub"),
            ("opera", "12.16", "/wd/hub"),
            ("opera", "33.0", "/"),
            ("chrome", "46.0", "/"),
        ],
    )
    def test_browser_path(self, browser, tag, expected):
        assert browser_path(browser, tag) == expected


class TestCreate:
    @pytest.mark.asyncio
    async def test_registry_unavailable_closes_clients(self, make_config, docker):
        """Should close both clients when the registry ping fails."""

        class DownRegistry(FakeRegistry):
            async def ping(self) -> None:
                raise InitializationError("Docker Registry is not available")

        registry = DownRegistry()

        with pytest.raises(InitializationError):
            await ContainerBackend.create(make_config(), docker=docker, registry=registry)

        assert registry.close_calls == 1
        assert docker.close_calls == 1

    @pytest.mark.asyncio
    async def test_close_closes_both_clients(self, make_config, docker, registry):
        backend = await ContainerBackend.create(make_config(), docker=docker, registry=registry)

        await backend.close()

        assert registry.close_calls == 1
        assert docker.close_calls == 1


class TestDownload:
    @pytest.mark.asyncio
    async def test_is_downloaded(self, make_backend, docker):
        backend = make_backend()
        assert await backend.is_downloaded() is False

        docker.local_images.add("aerokube/selenoid:1.10.0")
        assert await backend.is_downloaded() is True

    @pytest.mark.asyncio
    async def test_latest_resolves_newest_tag(self, make_backend, docker):
        """Should pull the newest registry tag, ignoring 'latest'."""
        backend = make_backend()

        artifact = await backend.download()

        assert artifact == ResolvedArtifact(image="aerokube/selenoid:1.10.0")
        assert docker.images.pull_calls == ["aerokube/selenoid:1.10.0"]
        assert await backend.is_downloaded() is True

    @pytest.mark.asyncio
    async def test_explicit_version(self, make_backend, docker, registry):
        backend = make_backend(version="1.9.0")

        artifact = await backend.download()

        assert artifact.image == "aerokube/selenoid:1.9.0"
        assert registry.tags_calls == []

    @pytest.mark.asyncio
    async def test_no_tags_pulls_untagged_image(self, make_config, docker):
        backend = ContainerBackend(make_config(), docker=docker, registry=FakeRegistry())

        artifact = await backend.download()

        assert artifact.image == "aerokube/selenoid"
        assert docker.images.pull_calls == ["aerokube/selenoid"]

    @pytest.mark.asyncio
    async def test_pull_failure(self, make_backend, docker):
        docker.missing_images.add("aerokube/selenoid:1.10.0")
        backend = make_backend()

        with pytest.raises(FetchError) as exc_info:
            await backend.download()

        assert exc_info.value.details == {"image": "aerokube/selenoid:1.10.0"}


class TestConfigure:
    @pytest.mark.asyncio
    async def test_no_download_limits_versions(self, make_backend, docker, output_dir):
        """Should keep the newest last_versions tags without pulling."""
        backend = make_backend(browsers="firefox", download=False, last_versions=2)

        cfg = await backend.configure()

        assert list(cfg.root) == ["firefox"]
        assert cfg["firefox"].default == "46.0"
        assert list(cfg["firefox"].versions) == ["46.0", "45.0"]
        assert docker.images.pull_calls == []
        assert (output_dir / "browsers.json").exists()

    @pytest.mark.asyncio
    async def test_download_pulls_last_versions(self, make_backend, docker):
        """Should stop pulling once last_versions tags succeeded."""
        backend = make_backend(browsers="firefox", last_versions=2)

        cfg = await backend.configure()

        assert list(cfg["firefox"].versions) == ["46.0", "45.0"]
        assert docker.images.pull_calls == ["selenoid/firefox:46.0", "selenoid/firefox:45.0"]

    @pytest.mark.asyncio
    async def test_failed_pull_is_skipped(self, make_backend, docker):
        """Should exclude a tag whose pull failed and try the next one."""
        docker.missing_images.add("selenoid/firefox:46.0")
        backend = make_backend(browsers="firefox", last_versions=2)

        cfg = await backend.configure()

        assert cfg["firefox"].default == "45.0"
        assert list(cfg["firefox"].versions) == ["45.0", "7.0"]

    @pytest.mark.asyncio
    async def test_error_record_fails_pull(self, make_backend, docker):
        docker.broken_images.add("selenoid/chrome:46.0")
        backend = make_backend(browsers="chrome", last_versions=1)

        cfg = await backend.configure()

        assert list(cfg["chrome"].versions) == ["45.0"]
        assert "selenoid/chrome:46.0" not in docker.local_images

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [aiohttp.ClientPayloadError("connection reset mid-pull"), asyncio.TimeoutError()],
    )
    async def test_broken_pull_stream_is_skipped(self, make_config, docker, output_dir, error):
        """Should drop a tag whose pull stream breaks and keep configuring."""
        docker.stream_failures["selenoid/chrome:46.0"] = error
        registry = FakeRegistry({"selenoid/chrome": ["46.0", "45.0"], "selenoid/firefox": ["46.0"]})
        backend = ContainerBackend(
            make_config(browsers="chrome,firefox", last_versions=1),
            docker=docker,
            registry=registry,
        )

        cfg = await backend.configure()

        assert list(cfg["chrome"].versions) == ["45.0"]
        assert list(cfg["firefox"].versions) == ["46.0"]
        assert "selenoid/chrome:46.0" not in docker.local_images
        written = json.loads((output_dir / "browsers.json").read_text())
        assert sorted(written) == ["chrome", "firefox"]

    @pytest.mark.asyncio
    async def test_present_image_is_not_pulled(self, make_backend, docker):
        docker.local_images.add("selenoid/chrome:46.0")
        backend = make_backend(browsers="chrome", last_versions=1)

        cfg = await backend.configure()

        assert list(cfg["chrome"].versions) == ["46.0"]
        assert docker.images.pull_calls == []

    @pytest.mark.asyncio
    async def test_pull_flag_forces_pull(self, make_backend, docker):
        docker.local_images.add("selenoid/chrome:46.0")
        backend = make_backend(browsers="chrome", last_versions=1, pull=True)

        await backend.configure()

        assert docker.images.pull_calls == ["selenoid/chrome:46.0"]

    @pytest.mark.asyncio
    async def test_cancel_interrupts_pull(self, make_config, docker, registry):
        """Should drop the tag being pulled when cancellation is requested."""
        cancel = asyncio.Event()
        docker.cancel_during_pull("selenoid/chrome:46.0", cancel)
        backend = ContainerBackend(
            make_config(browsers="chrome", last_versions=1),
            docker=docker,
            registry=registry,
            cancel_event=cancel,
        )

        cfg = await backend.configure()

        assert cancel.is_set()
        assert "chrome" not in cfg
        assert docker.local_images == set()

    @pytest.mark.asyncio
    async def test_paths_per_browser(self, make_backend):
        backend = make_backend(download=False, last_versions=0)

        cfg = await backend.configure()

        assert cfg["firefox"].versions["46.0"].path == "/wd/hub"
        assert cfg["chrome"].versions["46.0"].path == "/"
        assert cfg["opera"].versions["12.16"].path == "/wd/hub"
        assert cfg["opera"].versions["33.0"].path == "/"
        assert cfg["opera"].default == "33.0"

    @pytest.mark.asyncio
    async def test_tmpfs(self, make_backend, output_dir):
        """Should attach the tmpfs mount to every entry of every browser."""
        backend = make_backend(download=False, last_versions=0, tmpfs=512)

        cfg = await backend.configure()

        entries = [e for versions in cfg.root.values() for e in versions.versions.values()]
        assert len(entries) == 7
        assert all(e.tmpfs == {"/tmp": "size=512m"} for e in entries)
        written = json.loads((output_dir / "browsers.json").read_text())
        assert written["chrome"]["versions"]["46.0"]["tmpfs"] == {"/tmp": "size=512m"}

    @pytest.mark.asyncio
    async def test_no_tmpfs_is_omitted(self, make_backend, output_dir):
        backend = make_backend(download=False, last_versions=0)

        await backend.configure()

        text = (output_dir / "browsers.json").read_text()
        assert "tmpfs" not in text
        written = json.loads(text)
        assert written["chrome"]["versions"]["46.0"] == {
            "image": "selenoid/chrome:46.0",
            "port": "4444",
            "path": "/",
        }

    @pytest.mark.asyncio
    async def test_tag_listing_failure_skips_browser(self, make_config, docker):
        registry = FakeRegistry({"selenoid/chrome": ["46.0"]})
        backend = ContainerBackend(
            make_config(browsers="firefox,chrome", download=False),
            docker=docker,
            registry=registry,
        )

        cfg = await backend.configure()

        assert list(cfg.root) == ["chrome"]

    @pytest.mark.asyncio
    async def test_unknown_browser_is_ignored(self, make_backend):
        backend = make_backend(browsers="chrome,safari", download=False)

        cfg = await backend.configure()

        assert list(cfg.root) == ["chrome"]


class TestRunnable:
    @pytest.mark.asyncio
    async def test_start_without_image(self, make_backend, docker):
        """Should refuse to start when the service image is missing."""
        backend = make_backend()

        with pytest.raises(InvariantViolationError):
            await backend.start()

        assert docker.containers.create_calls == []

    @pytest.mark.asyncio
    async def test_start(self, make_backend, docker, output_dir):
        docker.local_images.add("aerokube/selenoid:1.10.0")
        backend = make_backend()

        await backend.start()

        assert await backend.is_running() is True
        [call] = docker.containers.create_calls
        assert call["name"] == SERVICE_CONTAINER_NAME
        config = call["config"]
        assert config["Image"] == "aerokube/selenoid:1.10.0"
        assert config["ExposedPorts"] == {"4444/tcp": {}}
        assert config["HostConfig"]["AutoRemove"] is True
        assert f"{output_dir.resolve()}:{CONTAINER_CONFIG_DIR}:ro" in config["HostConfig"]["Binds"]
        assert any(env.startswith("TZ=") for env in config["Env"])

    @pytest.mark.asyncio
    async def test_start_prefers_requested_version(self, make_backend, docker):
        docker.local_images.update({"aerokube/selenoid:1.9.0", "aerokube/selenoid:1.10.0"})
        backend = make_backend(version="1.9.0")

        await backend.start()

        assert docker.containers.create_calls[0]["config"]["Image"] == "aerokube/selenoid:1.9.0"

    @pytest.mark.asyncio
    async def test_start_picks_highest_local_tag(self, make_backend, docker):
        """Should start the newest local image, not the first one listed."""
        docker.local_images.update({"aerokube/selenoid:1.8.0", "aerokube/selenoid:1.9.0"})
        backend = make_backend()

        await backend.start()

        assert docker.containers.create_calls[0]["config"]["Image"] == "aerokube/selenoid:1.9.0"

    @pytest.mark.asyncio
    async def test_start_failure_removes_container(self, make_backend, docker):
        """Should remove the created container when it fails to start."""
        docker.local_images.add("aerokube/selenoid:1.10.0")
        docker.start_error = DockerError(500, {"message": "port is already allocated"})
        backend = make_backend()

        with pytest.raises(StartError):
            await backend.start()

        assert docker.delete_calls == [("fake-1", {"force": True, "v": True})]
        assert docker.containers_by_id == {}

    @pytest.mark.asyncio
    async def test_created_but_not_started_is_not_running(self, make_backend, docker):
        await docker.containers.create(config={"Image": "x"}, name=SERVICE_CONTAINER_NAME)

        assert await make_backend().is_running() is False

    @pytest.mark.asyncio
    async def test_stop(self, make_backend, docker):
        docker.local_images.add("aerokube/selenoid:1.10.0")
        backend = make_backend()
        await backend.start()

        await backend.stop()

        assert await backend.is_running() is False
        assert docker.delete_calls == [("fake-1", {"force": True, "v": True})]

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, make_backend, docker):
        await make_backend().stop()

        assert docker.delete_calls == []

    @pytest.mark.asyncio
    async def test_stop_tolerates_vanished_container(self, make_backend, docker):
        docker.local_images.add("aerokube/selenoid:1.10.0")
        backend = make_backend()
        await backend.start()
        docker.delete_error = DockerError(404, {"message": "No such container"})

        await backend.stop()

    @pytest.mark.asyncio
    async def test_stop_failure(self, make_backend, docker):
        docker.local_images.add("aerokube/selenoid:1.10.0")
        backend = make_backend()
        await backend.start()
        docker.delete_error = DockerError(500, {"message": "removal in progress"})

        with pytest.raises(StopError):
            await backend.stop()
