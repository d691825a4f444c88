from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Iterable

from .errors import InvalidAttribute


LOCAL_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]{0,62}$")
REFERENCE_RE = re.compile(r"^(network|image|container)\.([A-Za-z_][A-Za-z0-9_\-]{0,62})\.([a-z_]+)$")

# Attributes each kind exposes to other resources once applied.
OUTPUTS: dict[str, tuple[str, ...]] = {
    "network": ("id", "name"),
    "image": ("image_id", "digest"),
    "container": ("id",),
}


@dataclass(frozen=True)
class Reference:
    """Points at an output attribute of another resource, e.g. image.nginx.image_id."""

    kind: str
    name: str
    attribute: str

    @property
    def resource_id(self) -> str:
        return f"{self.kind}.{self.name}"

    def __str__(self) -> str:
        return f"{self.kind}.{self.name}.{self.attribute}"

    @classmethod
    def parse(cls, text: str) -> "Reference":
        m = REFERENCE_RE.match(text.strip())
        if not m:
            raise ValueError(f"Invalid reference '{text}'. Use <kind>.<name>.<attribute>.")
        return cls(kind=m.group(1), name=m.group(2), attribute=m.group(3))


@dataclass(frozen=True)
class PortMapping:
    internal: int
    external: int

    def as_dict(self) -> dict[str, int]:
        return {"internal": self.internal, "external": self.external}


@dataclass(frozen=True)
class Resource:
    local_name: str

    kind: ClassVar[str] = ""
    # Attributes the daemon can change without recreating the resource.
    mutable: ClassVar[frozenset[str]] = frozenset()

    @property
    def resource_id(self) -> str:
        return f"{self.kind}.{self.local_name}"

    def attributes(self) -> dict[str, Any]:
        raise NotImplementedError

    def references(self) -> list[Reference]:
        refs: list[Reference] = []
        for value in self.attributes().values():
            for item in _flatten(value):
                if isinstance(item, Reference) and item not in refs:
                    refs.append(item)
        return refs

    def validate(self) -> None:
        if not LOCAL_NAME_RE.match(self.local_name or ""):
            raise InvalidAttribute(
                self.resource_id, "local_name", "use letters, digits, '_' and '-', starting with a letter or '_'"
            )
        name = self.attributes().get("name")
        if not isinstance(name, str) or not name.strip():
            raise InvalidAttribute(self.resource_id, "name", "must be a non-empty string")


@dataclass(frozen=True)
class Network(Resource):
    name: str = ""

    kind: ClassVar[str] = "network"

    def attributes(self) -> dict[str, Any]:
        return {"name": self.name}


@dataclass(frozen=True)
class Image(Resource):
    name: str = ""
    keep_locally: bool = False

    kind: ClassVar[str] = "image"
    # keep_locally only changes what happens on destroy; nothing to do on the daemon.
    mutable: ClassVar[frozenset[str]] = frozenset({"keep_locally"})

    def attributes(self) -> dict[str, Any]:
        return {"name": self.name, "keep_locally": self.keep_locally}

    def validate(self) -> None:
        super().validate()
        if any(ch.isspace() for ch in self.name):
            raise InvalidAttribute(self.resource_id, "name", "image reference must not contain whitespace")
        if not isinstance(self.keep_locally, bool):
            raise InvalidAttribute(self.resource_id, "keep_locally", "must be a boolean")


@dataclass(frozen=True)
class Container(Resource):
    name: str = ""
    image: Reference | None = None
    networks: tuple[Reference, ...] = ()
    ports: tuple[PortMapping, ...] = field(default_factory=tuple)

    kind: ClassVar[str] = "container"

    def attributes(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "image": self.image,
            "networks": tuple(dict.fromkeys(self.networks)),
            "ports": tuple(self.ports),
        }

    def validate(self) -> None:
        super().validate()
        if self.image is None:
            raise InvalidAttribute(self.resource_id, "image", "a reference to an image is required")
        if self.image.kind != "image":
            raise InvalidAttribute(self.resource_id, "image", f"'{self.image}' does not point at an image")
        for ref in self.networks:
            if ref.kind != "network":
                raise InvalidAttribute(self.resource_id, "networks", f"'{ref}' does not point at a network")
        for p in self.ports:
            for side in ("internal", "external"):
                port = getattr(p, side)
                if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
                    raise InvalidAttribute(self.resource_id, "ports", f"{side} port {port!r} is outside 1-65535")


def _flatten(value: Any) -> Iterable[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        for v in value:
            yield from _flatten(v)
    else:
        yield value


def validate_declarations(resources: list[Resource]) -> None:
    """Check every resource and every reference before anything touches the daemon."""
    seen: dict[str, Resource] = {}
    for r in resources:
        if r.resource_id in seen:
            raise InvalidAttribute(r.resource_id, "local_name", "declared more than once")
        seen[r.resource_id] = r

    for r in resources:
        r.validate()
        for ref in r.references():
            if ref.resource_id not in seen:
                raise InvalidAttribute(r.resource_id, str(ref), f"references undeclared resource '{ref.resource_id}'")
            if ref.attribute not in OUTPUTS[ref.kind]:
                raise InvalidAttribute(r.resource_id, str(ref), f"{ref.kind} has no output '{ref.attribute}'")


def resolve_attributes(resource: Resource, lookup: Callable[[Reference], Any]) -> dict[str, Any]:
    """Replace references by concrete values and normalise to JSON-friendly data.

    `lookup` returns the value of an upstream output. Network lists are sorted
    since container networks are a set.
    """
    out: dict[str, Any] = {}
    for key, value in resource.attributes().items():
        out[key] = _resolve(value, lookup)
    if isinstance(out.get("networks"), list):
        out["networks"] = sorted(out["networks"], key=str)
    return out


def _resolve(value: Any, lookup: Callable[[Reference], Any]) -> Any:
    if isinstance(value, Reference):
        return lookup(value)
    if isinstance(value, PortMapping):
        return value.as_dict()
    if isinstance(value, (list, tuple)):
        return [_resolve(v, lookup) for v in value]
    return value
