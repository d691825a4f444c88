import os
import sys

import pytest

# Ensure project root is importable (so `import drc` works without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from drc.db import StateStore  # noqa: E402
from drc.errors import DaemonSemanticError, DaemonTransportError  # noqa: E402
from drc.resources import Container, Image, Network, PortMapping, Reference  # noqa: E402


class FakeDaemon:
    """In-memory daemon that records every call.

    `fail` maps an operation name (or "op:argument") to the exception it raises.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}
        self.running: dict[str, bool] = {}
        self._n = 0

    def _next_id(self, prefix: str) -> str:
        self._n += 1
        return f"{prefix}{self._n:04d}"

    def _call(self, op: str, *args):
        self.calls.append((op,) + args)
        for key in (op, f"{op}:{args[0]}" if args else op):
            if key in self.fail:
                raise self.fail[key]

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]

    def available(self) -> bool:
        return True

    def create_network(self, name):
        self._call("create_network", name)
        return self._next_id("net")

    def remove_network(self, network_id):
        self._call("remove_network", network_id)

    def pull_image(self, ref):
        self._call("pull_image", ref)
        return f"sha256:{ref.replace(':', '-')}", f"{ref.split(':')[0]}@sha256:feed"

    def remove_image(self, image_id):
        self._call("remove_image", image_id)

    def create_container(self, name, image_id, networks, ports):
        self._call("create_container", name, image_id, list(networks), list(ports))
        cid = self._next_id("ctr")
        self.running[cid] = True
        return cid

    def remove_container(self, container_id):
        self._call("remove_container", container_id)
        self.running.pop(container_id, None)

    def container_is_running(self, container_id):
        self._call("container_is_running", container_id)
        return self.running.get(container_id, False)


@pytest.fixture
def daemon():
    return FakeDaemon()


@pytest.fixture
def store(tmp_path):
    s = StateStore(str(tmp_path / "state.db"))
    s.init_db()
    return s


def nginx_stack(tag: str = "nginx:latest", keep_locally: bool = False, external: int = 8080):
    return [
        Network("app_network", name="app_network"),
        Image("nginx", name=tag, keep_locally=keep_locally),
        Container(
            "nginx_container",
            name="nginx_container",
            image=Reference("image", "nginx", "image_id"),
            networks=(Reference("network", "app_network", "name"),),
            ports=(PortMapping(internal=80, external=external),),
        ),
    ]


@pytest.fixture
def stack():
    return nginx_stack()


@pytest.fixture
def declarations_json():
    return {
        "resources": [
            {"kind": "network", "name": "app_network", "attributes": {"name": "app_network"}},
            {"kind": "image", "name": "nginx", "attributes": {"name": "nginx:latest"}},
            {
                "kind": "container",
                "name": "nginx_container",
                "attributes": {
                    "name": "nginx_container",
                    "image": {"ref": "image.nginx.image_id"},
                    "networks": [{"ref": "network.app_network.name"}],
                    "ports": [{"internal": 80, "external": 8080}],
                },
            },
        ]
    }


@pytest.fixture
def transport_error():
    return DaemonTransportError("daemon unreachable or timed out (ReadTimeout)")


@pytest.fixture
def semantic_error():
    return DaemonSemanticError("Conflict. The container name is already in use")


@pytest.fixture
def make_stack():
    return nginx_stack
