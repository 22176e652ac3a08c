"""
Pytest configuration and fixtures for shipping gateway tests.
"""
import json
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

# Set test environment before importing app modules
os.environ["SHIPPING_CONFIG_PATH"] = ""
os.environ["SHIPPO_API_BASE"] = "https://api.goshippo.test"
os.environ["SHIPPO_TRACKING_DOMAIN"] = "http://tracking.goshippo.test"

from shipping_gateway.core.http_client import JSONWebClient
from shipping_gateway.core.monitoring import MetricsCollector
from shipping_gateway.models.address import Address
from shipping_gateway.models.shipment import DistanceUnit, Label, LabelFormat, Shipment, WeightUnit
from shipping_gateway.modules.shipping.session import ConnectionParameters, ShippingSession, User
from shipping_gateway.modules.shipping.system import OP_CREATE_LABEL, Capabilities, ShippingSystem
from shipping_gateway.modules.shipping.systems.shippo import ShippoSystem

API_BASE = "https://api.goshippo.test"
TEST_TOKEN = "shippo_test_0123456789"


def make_system_section(**overrides) -> Dict[str, Any]:
    """A shipping-system section with a small, realistic carrier catalog."""
    section = {
        "name": "shippo",
        "type": "shippo",
        "web-service-call-timeout-ms": 5000,
        "default-session-connect-params": {"name": "default", "private-token": TEST_TOKEN},
        "carriers": [
            {
                "carrier-type": "UPS",
                "name": "UPS",
                "tracking-url": "https://www.ups.com/track?tracknum={0}",
                "nls-name": {"eng": {"n": "UPS"}, "deu": {"n": "UPS Deutschland"}},
                "services": [
                    {"name": "Ground", "price-category": "STANDARD", "trackable": True},
                    {"name": "2Day", "price-category": "EXPEDITED", "trackable": True, "insurance": True},
                ],
                "packages": [
                    {
                        "name": "UPS_Box",
                        "package-type": "BOX",
                        "distance-unit": "IN",
                        "length": 12,
                        "width": 10,
                        "height": 4,
                        "weight-unit": "LB",
                        "weight": 2,
                    },
                ],
            },
            {
                "carrier-type": "USPS",
                "name": "usps",
                "services": [{"name": "usps_priority", "price-category": "STANDARD"}],
            },
            {
                "carrier-type": "FEDEX",
                "name": "FedEx",
                "services": [{"name": "2Day"}],
            },
            {
                "carrier-type": "UNKNOWN",
                "name": "localpost",
            },
        ],
    }
    section.update(overrides)
    return section


class FakeShippoAPI:
    """
    In-process stand-in for the Shippo REST API.

    Routes (method, path) to canned JSON responses and records every request.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, json_body: Any = None, status: int = 200,
            error: Optional[Exception] = None) -> None:
        self.routes[(method.upper(), path)] = (status, json_body, error)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"detail": "Not found."})
        status, body, error = route
        if error is not None:
            raise error
        return httpx.Response(status, json=body)

    def request_json(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def shippo_api() -> FakeShippoAPI:
    return FakeShippoAPI()


@pytest.fixture
def metrics_sink() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def web_client(shippo_api) -> JSONWebClient:
    return JSONWebClient(timeout=5.0, transport=httpx.MockTransport(shippo_api.handler))


@pytest.fixture
def shippo_system(web_client, metrics_sink):
    system = ShippoSystem("shippo", make_system_section(), web_client=web_client, metrics_sink=metrics_sink)
    system.start()
    yield system
    system.stop()


@pytest.fixture
def shippo_session(shippo_system):
    with shippo_system.start_session() as session:
        yield session


@pytest.fixture
def sample_from_address() -> Address:
    return Address(
        person_name="Mr Hippo",
        line1="215 Clayton St.",
        city="San Francisco",
        region="CA",
        postal="94117",
        country="USA",
        phone="+1 555 341 9393",
        email="support@goshippo.com",
    )


@pytest.fixture
def sample_to_address() -> Address:
    return Address(
        person_name="Mrs Hippo",
        line1="965 Mission St.",
        line2="Suite 480",
        city="New York",
        region="NY",
        postal="10001",
        country="US",
        company="Shippo",
    )


@pytest.fixture
def sample_shipment(shippo_system, sample_from_address, sample_to_address) -> Shipment:
    carrier = shippo_system.find_carrier(None, None, "UPS")
    return Shipment(
        carrier=carrier,
        service=carrier.services["Ground"],
        package=carrier.packages["UPS_Box"],
        distance_unit=DistanceUnit.IN,
        length=Decimal("12"),
        width=Decimal("10"),
        height=Decimal("4.5"),
        weight_unit=WeightUnit.LB,
        weight=Decimal("2"),
        label_format=LabelFormat.PDF_4X6,
        from_address=sample_from_address,
        to_address=sample_to_address,
    )


class StubSystem(ShippingSystem):
    """Provider double with configurable capabilities; records every delegated call."""

    def __init__(self, name="stub", node=None, capabilities=None, **kwargs):
        self._capabilities = capabilities or Capabilities()
        self.calls: List[str] = []
        super().__init__(name, node, **kwargs)

    @property
    def capabilities(self) -> Capabilities:
        return self._capabilities

    def do_start_session(self, params=None) -> ShippingSession:
        return ShippingSession(self, params or self.default_session_connect_params or ConnectionParameters())

    def make_default_session_connect_params(self, section) -> ConnectionParameters:
        name = section.get("name")
        return ConnectionParameters(name=name, user=User(name=name or "stub"))

    def create_label(self, session, context, shipment):
        self.calls.append("create_label")
        return self._run_operation(
            OP_CREATE_LABEL, "Creating label", lambda e: f"Error creating label: {e!r}",
            lambda log_id: self._label(shipment),
        )

    def validate_address(self, session, context, address):
        self.calls.append("validate_address")
        return address, None

    def estimate_shipping_cost(self, session, context, shipment):
        self.calls.append("estimate_shipping_cost")
        return None

    def _label(self, shipment):
        if shipment is None:
            raise ValueError("no shipment")
        self._stat(OP_CREATE_LABEL)
        return Label(id="1", url="u", format=LabelFormat.PDF, tracking_number="T1", carrier_type=shipment.carrier.type)


ALL_CAPABILITIES = Capabilities(
    supports_label_creation=True,
    supports_shipment_tracking=True,
    supports_address_validation=True,
    supports_carrier_services=True,
    supports_shipping_cost_estimation=True,
)
