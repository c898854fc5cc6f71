"""Tests for target record schema resolution."""

import json
from dataclasses import replace
from pathlib import Path

import pytest

from kafka_output.avro_schema import resolve_target_schema
from kafka_output.common.exceptions import ConfigurationError, SchemaError
from kafka_output.config import parse_config


class TestResolveTargetSchema:
    def test_plain_mode_has_no_target(self, plain_options):
        assert resolve_target_schema(parse_config(plain_options)) is None

    def test_inline_mapping(self, registry_options, orders_avsc):
        target = resolve_target_schema(parse_config(registry_options))

        assert target.name == "com.example.Order"
        assert [f["name"] for f in target.fields] == [
            "id", "name", "price", "paid", "created_at", "meta",
        ]
        assert json.loads(target.schema_str) == orders_avsc

    def test_inline_json_string(self, registry_options, orders_avsc):
        registry_options["avsc"] = json.dumps(orders_avsc)
        target = resolve_target_schema(parse_config(registry_options))
        assert target.name == "com.example.Order"

    def test_file(self, registry_options, orders_avsc, tmp_path):
        path = tmp_path / "order.avsc"
        path.write_text(json.dumps(orders_avsc), encoding="utf-8")
        del registry_options["avsc"]
        registry_options["avsc_file"] = str(path)

        target = resolve_target_schema(parse_config(registry_options))

        assert len(target.fields) == 6

    def test_unreadable_file(self, registry_options, tmp_path):
        del registry_options["avsc"]
        registry_options["avsc_file"] = str(tmp_path / "missing.avsc")

        with pytest.raises(ConfigurationError, match="avsc_file cannot read"):
            resolve_target_schema(parse_config(registry_options))

    def test_both_sources_rejected(self, registry_options):
        config = replace(parse_config(registry_options), avsc_file=Path("order.avsc"))
        with pytest.raises(ConfigurationError, match="either one of avsc and avsc_file"):
            resolve_target_schema(config)

    def test_invalid_json(self, registry_options):
        registry_options["avsc"] = "{not json"
        with pytest.raises(SchemaError, match="not valid JSON"):
            resolve_target_schema(parse_config(registry_options))

    def test_invalid_avro(self, registry_options):
        registry_options["avsc"] = {
            "type": "record",
            "name": "Broken",
            "fields": [{"name": "x", "type": "nope"}],
        }
        with pytest.raises(SchemaError, match="Invalid Avro schema"):
            resolve_target_schema(parse_config(registry_options))

    def test_non_record_rejected(self, registry_options):
        registry_options["avsc"] = {"type": "enum", "name": "Color", "symbols": ["RED"]}
        with pytest.raises(SchemaError, match="must be an Avro record"):
            resolve_target_schema(parse_config(registry_options))
