import pytest

from drc.errors import InvalidAttribute
from drc.resources import (
    Container,
    Image,
    Network,
    PortMapping,
    Reference,
    resolve_attributes,
    validate_declarations,
)


def test_reference_parse_and_str():
    ref = Reference.parse("image.nginx.image_id")
    assert ref == Reference("image", "nginx", "image_id")
    assert ref.resource_id == "image.nginx"
    assert str(ref) == "image.nginx.image_id"

    with pytest.raises(ValueError):
        Reference.parse("docker_image.nginx")


def test_container_references_dedupe_networks(make_stack):
    net, img, ctr = make_stack()
    assert net.references() == []
    assert img.references() == []

    doubled = Container(
        "c",
        name="c",
        image=Reference("image", "nginx", "image_id"),
        networks=(Reference("network", "app_network", "name"),) * 2,
    )
    assert [r.resource_id for r in doubled.references()] == ["image.nginx", "network.app_network"]


def test_valid_stack_passes(make_stack):
    validate_declarations(make_stack())


@pytest.mark.parametrize("port", [0, 65536, -1])
def test_port_out_of_range(make_stack, port):
    resources = make_stack(external=port)
    with pytest.raises(InvalidAttribute) as exc:
        validate_declarations(resources)
    assert exc.value.resource_id == "container.nginx_container"
    assert exc.value.attribute == "ports"


def test_empty_name_is_rejected():
    with pytest.raises(InvalidAttribute) as exc:
        validate_declarations([Network("app_network", name="  ")])
    assert exc.value.attribute == "name"


def test_reference_to_undeclared_resource(make_stack):
    net, _, ctr = make_stack()
    with pytest.raises(InvalidAttribute) as exc:
        validate_declarations([net, ctr])
    assert "image.nginx" in str(exc.value)


def test_reference_to_unknown_output(make_stack):
    net, img, _ = make_stack()
    ctr = Container("c", name="c", image=Reference("image", "nginx", "size"))
    with pytest.raises(InvalidAttribute):
        validate_declarations([net, img, ctr])


def test_container_image_must_point_at_an_image(make_stack):
    net, img, _ = make_stack()
    ctr = Container("c", name="c", image=Reference("network", "app_network", "name"))
    with pytest.raises(InvalidAttribute) as exc:
        validate_declarations([net, img, ctr])
    assert exc.value.attribute == "image"


def test_duplicate_local_name_within_kind():
    with pytest.raises(InvalidAttribute):
        validate_declarations([Network("a", name="a"), Network("a", name="b")])

    # same local name across kinds is fine
    validate_declarations([Network("nginx", name="n"), Image("nginx", name="nginx:latest")])


def test_resolve_attributes_sorts_networks_and_flattens_ports():
    ctr = Container(
        "c",
        name="c",
        image=Reference("image", "i", "image_id"),
        networks=(Reference("network", "b", "name"), Reference("network", "a", "name")),
        ports=(PortMapping(80, 8080), PortMapping(443, 8443)),
    )
    values = {"image.i.image_id": "sha256:1", "network.a.name": "net-a", "network.b.name": "net-b"}
    attrs = resolve_attributes(ctr, lambda ref: values[str(ref)])
    assert attrs == {
        "name": "c",
        "image": "sha256:1",
        "networks": ["net-a", "net-b"],
        "ports": [{"internal": 80, "external": 8080}, {"internal": 443, "external": 8443}],
    }
