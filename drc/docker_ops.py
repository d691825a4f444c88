from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.utils import parse_repository_tag

from .errors import DaemonSemanticError, DaemonTransportError
from .resources import PortMapping
from .settings import settings


@contextmanager
def _translate_errors(what: str) -> Iterator[None]:
    """Turn docker SDK errors into the reconciler's transport/semantic split."""
    try:
        yield
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
        raise DaemonTransportError(f"{what}: daemon unreachable or timed out ({type(e).__name__})") from e
    except APIError as e:
        status = e.status_code or 0
        detail = e.explanation or str(e)
        if status >= 500 and not isinstance(e, NotFound):
            raise DaemonTransportError(f"{what}: daemon error {status}: {detail}") from e
        raise DaemonSemanticError(f"{what}: {detail}") from e
    except DockerException as e:
        raise DaemonTransportError(f"{what}: {e}") from e


class DockerDaemon:
    """Performs the actual resource mutations through the Docker SDK.

    The client is created lazily so importing this module never needs a daemon.
    Every call is bounded by the client timeout (settings.daemon_timeout_s).
    """

    def __init__(self, client: docker.DockerClient | None = None, timeout_s: int | None = None):
        self._client = client
        self.timeout_s = timeout_s or settings.daemon_timeout_s

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            with _translate_errors("connect"):
                self._client = docker.from_env(timeout=self.timeout_s)
        return self._client

    def available(self) -> bool:
        try:
            self.client.ping()
            return True
        except (DockerException, DaemonTransportError, requests.exceptions.RequestException):
            return False

    def create_network(self, name: str) -> str:
        with _translate_errors(f"create network '{name}'"):
            net = self.client.networks.create(name, driver="bridge")
        return net.id

    def remove_network(self, network_id: str) -> None:
        with _translate_errors(f"remove network {network_id[:12]}"):
            try:
                self.client.networks.get(network_id).remove()
            except NotFound:
                return

    def pull_image(self, ref: str) -> tuple[str, str | None]:
        """Pull `ref` (name[:tag]) and return (image_id, repo digest or None)."""
        repo, tag = parse_repository_tag(ref)
        with _translate_errors(f"pull image '{ref}'"):
            image = self.client.images.pull(repo, tag=tag or "latest")
        digests = image.attrs.get("RepoDigests") or []
        return image.id, (digests[0] if digests else None)

    def remove_image(self, image_id: str) -> None:
        with _translate_errors(f"remove image {image_id[:19]}"):
            try:
                self.client.images.remove(image=image_id)
            except ImageNotFound:
                return

    def create_container(
        self,
        name: str,
        image_id: str,
        networks: list[str],
        ports: list[PortMapping],
    ) -> str:
        """Create and start a container, attached to every network in `networks`."""
        published: dict[str, list[int]] = {}
        for p in ports:
            published.setdefault(f"{p.internal}/tcp", []).append(p.external)

        with _translate_errors(f"create container '{name}'"):
            container = self.client.containers.create(
                image_id,
                name=name,
                ports=published,
                network=networks[0] if networks else None,
                labels={"drc.managed": "true"},
            )
            try:
                for net_name in networks[1:]:
                    self.client.networks.get(net_name).connect(container)
                container.start()
            except Exception:
                # Never leave a half-made container holding the name.
                try:
                    container.remove(force=True)
                except (DockerException, requests.exceptions.RequestException):
                    pass
                raise
        return container.id

    def remove_container(self, container_id: str) -> None:
        with _translate_errors(f"remove container {container_id[:12]}"):
            try:
                self.client.containers.get(container_id).remove(force=True)
            except NotFound:
                return

    def container_is_running(self, container_id: str) -> bool:
        with _translate_errors(f"inspect container {container_id[:12]}"):
            try:
                cont = self.client.containers.get(container_id)
                cont.reload()
                return cont.status == "running"
            except NotFound:
                return False
