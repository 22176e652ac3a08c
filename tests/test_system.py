"""
Tests for the ShippingSystem base: configuration binding, catalog, default
tracking, operation template, instrumentation and the system registry.
"""
import json
import logging
import time

import pytest

from shipping_gateway.core.config import load_config_root, settings
from shipping_gateway.core.exceptions import ShippingConfigError, ShippingError
from shipping_gateway.models.carrier import CarrierType
from shipping_gateway.models.shipment import Shipment
from shipping_gateway.modules.shipping.system import ComponentStatus
from shipping_gateway.modules.shipping.systems import (
    get_registered_systems,
    make_system,
    register_system,
)
from shipping_gateway.modules.shipping.systems.shippo import ShippoSystem

from tests.conftest import ALL_CAPABILITIES, StubSystem, make_system_section


def _root(*sections):
    return {"shipping-processing": {"shipping-system": list(sections)}}


def _unnamed_section(**overrides):
    section = make_system_section(**overrides)
    section.pop("name")
    return section


class TestConfiguration:

    def test_section_matching_instance_name_wins(self):
        root = _root(
            _unnamed_section(carriers=[]),
            make_system_section(name="Primary"),
        )

        system = StubSystem("primary", config_root=root)

        assert system.is_configured
        assert [c.name for c in system.get_shipping_carriers(None, None)] == ["UPS", "usps", "FedEx", "localpost"]

    def test_unnamed_section_is_fallback(self):
        root = _root(
            make_system_section(name="other"),
            _unnamed_section(carriers=[{"carrier-type": "USPS", "name": "usps"}]),
        )

        system = StubSystem("primary", config_root=root)

        assert [c.name for c in system.get_shipping_carriers(None, None)] == ["usps"]

    def test_single_section_object_is_accepted(self):
        root = {"shipping-processing": {"shipping-system": make_system_section(name="stub")}}

        system = StubSystem("stub", config_root=root)

        assert system.is_configured

    def test_no_matching_section_leaves_system_unconfigured(self):
        system = StubSystem("primary", config_root=_root(make_system_section(name="other")))

        assert not system.is_configured
        assert tuple(system.get_shipping_carriers(None, None)) == ()
        assert system.web_service_call_timeout_ms == 20000

    def test_configuration_read_from_config_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "shipping.json"
        config_file.write_text(json.dumps(_root(make_system_section(name="filed"))))
        monkeypatch.setattr(settings, "SHIPPING_CONFIG_PATH", str(config_file))

        system = StubSystem("filed")

        assert system.is_configured
        assert system.find_carrier(None, None, "fedex").type == CarrierType.FEDEX

    def test_duplicate_carrier_names_are_rejected(self):
        section = make_system_section(carriers=[
            {"carrier-type": "UPS", "name": "UPS"},
            {"carrier-type": "UPS", "name": "ups"},
        ])

        with pytest.raises(ShippingConfigError):
            StubSystem(node=section)

    def test_duplicate_service_names_are_rejected(self):
        section = make_system_section(carriers=[
            {"carrier-type": "UPS", "name": "UPS", "services": [{"name": "Ground"}, {"name": "GROUND"}]},
        ])

        with pytest.raises(ShippingConfigError):
            StubSystem(node=section)

    def test_malformed_section_is_rejected(self):
        with pytest.raises(ShippingConfigError) as exc_info:
            StubSystem(node=make_system_section(carriers="UPS"))

        assert exc_info.value.details["errors"]

    def test_enum_values_are_case_insensitive(self):
        section = make_system_section(carriers=[{
            "carrier-type": "dhl_express",
            "name": "DHL",
            "services": [{"name": "Express", "price-category": "expedited"}],
            "packages": [{"name": "Flyer", "package-type": "pak", "distance-unit": "cm", "weight-unit": "kg"}],
        }])

        carrier = StubSystem(node=section).find_carrier(None, None, "dhl")

        assert carrier.type == CarrierType.DHL_EXPRESS
        assert carrier.services["express"].price_category.value == "EXPEDITED"
        assert carrier.packages["flyer"].weight_unit.value == "KG"

    def test_pipelined_key_is_accepted(self):
        system = StubSystem(node=make_system_section(pipelined=False, **{"keep-alive": False}))

        assert system.is_configured
        assert system.keep_alive is False

    def test_timeout_from_section(self):
        system = StubSystem(node=make_system_section())

        assert system.web_service_call_timeout_ms == 5000

    @pytest.mark.parametrize("value, expected", [(-5, 0), (0, 0), (1500, 1500)])
    def test_timeout_is_never_negative(self, value, expected):
        system = StubSystem(node=make_system_section(**{"web-service-call-timeout-ms": value}))

        assert system.web_service_call_timeout_ms == expected

    def test_default_connect_params_are_used_for_sessions(self):
        system = StubSystem(node=make_system_section())

        with system.start_session() as session:
            assert session.name == "default"
            assert session.user.name == "default"

    def test_catalog_is_read_only(self):
        system = StubSystem(node=make_system_section())
        carrier = system.find_carrier(None, None, "UPS")

        with pytest.raises(ShippingError):
            carrier.services.register(carrier.services["Ground"])


class TestDefaultTracking:

    def test_track_shipment_returns_public_url_only(self):
        system = StubSystem(node=make_system_section(), capabilities=ALL_CAPABILITIES)

        with system.start_session() as session:
            info = session.track_shipment(None, "ups", "1Z999AA10123456784")

        assert info.tracking_url == "https://www.ups.com/track?tracknum=1Z999AA10123456784"
        assert info.tracking_number == "1Z999AA10123456784"
        assert info.carrier_id == "ups"
        assert info.history == []

    def test_carrier_without_template_has_no_url(self):
        system = StubSystem(node=make_system_section(), capabilities=ALL_CAPABILITIES)

        with system.start_session() as session:
            assert session.get_tracking_url(None, "usps", "9205590164917312751089") is None
            assert session.get_tracking_url(None, "nobody", "9205590164917312751089") is None

    def test_find_carrier_is_case_insensitive(self):
        system = StubSystem(node=make_system_section())

        assert system.find_carrier(None, None, "FEDEX").name == "FedEx"
        assert system.find_carrier(None, None, " fedex ").name == "FedEx"
        assert system.find_carrier(None, None, "") is None


class TestOperationsAndStats:

    @pytest.fixture
    def system(self, metrics_sink):
        system = StubSystem(node=make_system_section(), capabilities=ALL_CAPABILITIES, metrics_sink=metrics_sink)
        yield system
        system.stop()

    @pytest.fixture
    def shipment(self, system):
        carrier = system.find_carrier(None, None, "UPS")
        return Shipment(carrier=carrier, service=carrier.services["Ground"])

    def test_failure_is_wrapped_and_counted(self, system, shipment):
        with system.start_session() as session:
            label = session.create_label(None, shipment)
            with pytest.raises(ShippingError) as exc_info:
                session.create_label(None, None)

        assert label.tracking_number == "T1"
        assert exc_info.value.message == "no shipment"
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert exc_info.value.details["cause_type"] == "ValueError"
        assert system.stats_snapshot()["create_label"] == {"count": 1, "error_count": 1}

    def test_failure_log_records_are_correlated(self, system, caplog):
        caplog.set_level(logging.INFO)

        with system.start_session() as session:
            with pytest.raises(ShippingError):
                session.create_label(None, None)

        start, failure = [r for r in caplog.records if getattr(r, "topic", None) == "Shipping.Processing"]
        assert start.related_to is None
        assert failure.related_to == start.log_id
        assert failure.levelno == logging.ERROR
        assert failure.exc_info[0] is ValueError
        assert failure.shipping_system == "stub"

    def test_dump_stats_flushes_and_resets(self, system, shipment, metrics_sink):
        with system.start_session() as session:
            session.create_label(None, shipment)
            session.create_label(None, shipment)

        system.dump_stats()

        labels = {"source": "stub"}
        assert metrics_sink.get_gauge("shipping.create_label.count", labels) == 2
        assert metrics_sink.get_gauge("shipping.create_label.error_count", labels) == 0
        assert metrics_sink.get_gauge("shipping.track_shipment.count", labels) == 0
        assert system.stats_snapshot()["create_label"] == {"count": 0, "error_count": 0}
        assert metrics_sink.snapshot()["shipping.create_label.count{source=stub}"] == 2

    def test_enable_instrumentation_resets_counters(self, system, shipment):
        with system.start_session() as session:
            session.create_label(None, shipment)

        system.enable_instrumentation()

        assert system.instrumentation_enabled
        assert system.stats_snapshot()["create_label"]["count"] == 0

    def test_ticker_runs_only_while_enabled_and_running(self, system):
        system.enable_instrumentation()
        assert system._ticker is None

        system.start()
        assert system.status == ComponentStatus.RUNNING
        assert system._ticker.is_running

        system.disable_instrumentation()
        assert system._ticker is None

        system.enable_instrumentation()
        system.stop()
        assert system._ticker is None
        assert system.status == ComponentStatus.STOPPED

    def test_instrumentation_enabled_from_section(self, metrics_sink):
        system = StubSystem(
            node=make_system_section(**{"instrumentation-enabled": True}),
            metrics_sink=metrics_sink,
        )
        system.instrumentation_interval_seconds = 0.01

        with system:
            deadline = time.monotonic() + 2.0
            while metrics_sink.get_gauge("shipping.create_label.count", {"source": "stub"}) is None:
                assert time.monotonic() < deadline, "instrumentation ticker never fired"
                time.sleep(0.01)

        assert system.instrumentation_enabled
        assert system._ticker is None


class TestSystemRegistry:

    def test_shippo_is_registered(self):
        assert "shippo" in get_registered_systems()

    def test_make_system_by_type(self, web_client):
        system = make_system(make_system_section(type="Shippo"), web_client=web_client)

        assert isinstance(system, ShippoSystem)
        assert system.name == "shippo"
        assert system.is_configured

    def test_make_system_with_custom_registration(self):
        @register_system("stub-test")
        class RegisteredStub(StubSystem):
            pass

        system = make_system({"type": "STUB-TEST", "name": "custom"})

        assert isinstance(system, RegisteredStub)
        assert system.name == "custom"

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ShippingConfigError) as exc_info:
            make_system({"type": "carrier-pigeon"})

        assert "shippo" in exc_info.value.details["registered"]

    def test_missing_type_is_rejected(self):
        with pytest.raises(ShippingConfigError):
            make_system({"name": "nameless"})


class TestConfigRoot:

    def test_no_path_means_empty_tree(self):
        assert load_config_root("") == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ShippingConfigError):
            load_config_root(str(tmp_path / "absent.json"))

    def test_invalid_json(self, tmp_path):
        config_file = tmp_path / "broken.json"
        config_file.write_text("{not json")

        with pytest.raises(ShippingConfigError):
            load_config_root(str(config_file))

    def test_root_must_be_object(self, tmp_path):
        config_file = tmp_path / "list.json"
        config_file.write_text("[]")

        with pytest.raises(ShippingConfigError):
            load_config_root(str(config_file))
