"""
Tests for canvas document parsing.
"""
from __future__ import annotations

import json

import pytest

from archcost.core.diagram import Diagram
from archcost.core.errors import MalformedGraphError
from archcost.core.schema import NodeKind, ResourceType

from tests.fixtures import make_diagram, make_node, make_region, nat_gateway_diagram


class TestDiagramParsing:
    def test_parse_dict(self):
        diagram = Diagram.from_json(nat_gateway_diagram())
        nodes = {n.id: n for n in diagram.resource_nodes()}
        assert nodes["region-1"].kind is NodeKind.CONTAINER
        assert nodes["nat-1"].kind is NodeKind.RESOURCE
        assert nodes["nat-1"].resource_type is ResourceType.NAT_GATEWAY
        assert nodes["nat-1"].parent_id == "vpc-1"

    def test_parse_text_and_double_encoded(self):
        document = nat_gateway_diagram()
        once = json.dumps(document)
        twice = json.dumps(once)
        assert Diagram.from_json(once) == Diagram.from_json(document)
        assert Diagram.from_json(twice.encode("utf-8")) == Diagram.from_json(document)

    def test_layout_fields_ignored(self):
        node = make_node("web-1", "ec2")
        node["style"] = {"width": 120}
        node["measured"] = {"height": 40}
        diagram = Diagram.from_json(make_diagram(node))
        assert diagram.resource_nodes()[0].id == "web-1"

    def test_node_name_prefers_config_name(self):
        document = make_diagram(
            make_node("web-1", "ec2", config={"name": "api-server"}, label="EC2"),
            make_node("web-2", "ec2", label="Worker"),
        )
        names = {n.id: n.name for n in Diagram.from_json(document).resource_nodes()}
        assert names == {"web-1": "api-server", "web-2": "Worker"}

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("ec2", ResourceType.EC2_INSTANCE),
            ("EC2Instance", ResourceType.EC2_INSTANCE),
            ("nat-gateway", ResourceType.NAT_GATEWAY),
            ("nat_gateway", ResourceType.NAT_GATEWAY),
            ("eip", ResourceType.ELASTIC_IP),
            ("rds", ResourceType.RDS_INSTANCE),
            ("something-new", ResourceType.UNSUPPORTED),
        ],
    )
    def test_resource_type_aliases(self, raw, expected):
        assert ResourceType.resolve(raw) is expected

    def test_variables_substituted(self):
        document = make_diagram(
            make_region(),
            make_node(
                "web-1",
                "ec2",
                parent_id="region-1",
                config={"instance_type": "var.instance_type", "name": "web-${var.env}"},
            ),
            variables=(
                {"name": "instance_type", "type": "string", "default": "t3.small"},
                {"name": "env", "type": "string", "default": "prod"},
            ),
        )
        node = {n.id: n for n in Diagram.from_json(document).resource_nodes()}["web-1"]
        assert node.config["instance_type"] == "t3.small"
        assert node.config["name"] == "web-prod"

    def test_whole_variable_keeps_type(self):
        document = make_diagram(
            make_node("vol-1", "ebs", config={"size_gb": "${var.disk}"}),
            variables=({"name": "disk", "type": "number", "default": 100},),
        )
        node = Diagram.from_json(document).resource_nodes()[0]
        assert node.config["size_gb"] == 100

    def test_unknown_variable_left_as_is(self):
        document = make_diagram(make_node("vol-1", "ebs", config={"size_gb": "var.missing"}))
        node = Diagram.from_json(document).resource_nodes()[0]
        assert node.config["size_gb"] == "var.missing"

    @pytest.mark.parametrize(
        "payload",
        ["not json", "[]", '{"edges": []}', '{"nodes": [{"id": ""}]}', '{"nodes": "x"}'],
    )
    def test_malformed_documents(self, payload):
        with pytest.raises(MalformedGraphError):
            Diagram.from_json(payload)

    def test_non_utf8_bytes_are_malformed(self):
        with pytest.raises(MalformedGraphError, match="UTF-8"):
            Diagram.from_json(b'{"nodes": [\xff]}')
