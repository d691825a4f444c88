from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError

from .errors import InvalidAttribute
from .resources import Container, Image, Network, PortMapping, Reference, Resource
from .settings import settings


class RefModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ref: str = Field(..., description="Output of another resource: <kind>.<name>.<attribute>")


class PortModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    internal: int = Field(..., ge=1, le=65535, description="Port the container listens on")
    external: int = Field(..., ge=1, le=65535, description="Port published on the host")


class NetworkAttributes(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Docker network name")


class ImageAttributes(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Docker image (name:tag)")
    keep_locally: StrictBool = Field(False, description="Leave the image on the host when it is destroyed")


class ContainerAttributes(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Docker container name")
    image: RefModel
    networks: list[RefModel] = Field(default_factory=list)
    ports: list[PortModel] = Field(default_factory=list)


class NetworkDeclaration(BaseModel):
    kind: Literal["network"]
    name: str
    attributes: NetworkAttributes


class ImageDeclaration(BaseModel):
    kind: Literal["image"]
    name: str
    attributes: ImageAttributes


class ContainerDeclaration(BaseModel):
    kind: Literal["container"]
    name: str
    attributes: ContainerAttributes


Declaration = Annotated[
    Union[NetworkDeclaration, ImageDeclaration, ContainerDeclaration],
    Field(discriminator="kind"),
]


class DeclarationSet(BaseModel):
    resources: list[Declaration] = Field(default_factory=list)

    def to_resources(self) -> list[Resource]:
        """Convert to resource descriptors, keeping declaration order."""
        out: list[Resource] = []
        for d in self.resources:
            rid = f"{d.kind}.{d.name}"
            if isinstance(d, NetworkDeclaration):
                out.append(Network(d.name, name=d.attributes.name))
            elif isinstance(d, ImageDeclaration):
                out.append(Image(d.name, name=d.attributes.name, keep_locally=d.attributes.keep_locally))
            else:
                a = d.attributes
                out.append(
                    Container(
                        d.name,
                        name=a.name,
                        image=_parse_ref(rid, "image", a.image.ref),
                        networks=tuple(_parse_ref(rid, "networks", n.ref) for n in a.networks),
                        ports=tuple(PortMapping(p.internal, p.external) for p in a.ports),
                    )
                )
        return out


def _parse_ref(resource_id: str, attribute: str, text: str) -> Reference:
    try:
        return Reference.parse(text)
    except ValueError as e:
        raise InvalidAttribute(resource_id, attribute, str(e)) from e


def parse_declarations(data: Any) -> list[Resource]:
    """Parse structured declarations; schema errors surface as InvalidAttribute."""
    try:
        decl = DeclarationSet.model_validate(data)
    except ValidationError as e:
        raise _to_invalid_attribute(data, e) from e
    return decl.to_resources()


def load_file(path: str | None = None) -> list[Resource]:
    with open(path or settings.declarations_path, encoding="utf-8") as f:
        return parse_declarations(json.load(f))


def _to_invalid_attribute(data: Any, err: ValidationError) -> InvalidAttribute:
    first = err.errors()[0]
    loc = list(first.get("loc", ()))
    resource_id = "declarations"
    if len(loc) >= 2 and loc[0] == "resources" and isinstance(loc[1], int):
        try:
            item = data["resources"][loc[1]]
            resource_id = f"{item['kind']}.{item['name']}"
        except (KeyError, IndexError, TypeError):
            resource_id = f"resources[{loc[1]}]"
        # drop the list index and the union tag pydantic puts in the path
        loc = [p for p in loc[2:] if p not in ("network", "image", "container")]
    attribute = ".".join(str(p) for p in loc if p != "attributes") or "kind"
    return InvalidAttribute(resource_id, attribute, first.get("msg", "invalid value"))
