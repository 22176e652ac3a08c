"""
Shippo Shipping System v1.0.0

Implements ShippingSystem against the Shippo REST API:
- Label purchase (transactions) with a follow-up rate lookup for the cost
- Tracking by carrier code and tracking number
- Address validation
- Shipping cost estimation with best-price rate selection

Every request is a single synchronous round trip, no retry.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from shipping_gateway.core.config import settings
from shipping_gateway.core.exceptions import AddressValidationError, ShippingError
from shipping_gateway.core.http_client import JSONWebClient
from shipping_gateway.models.address import (
    Address,
    normalize_country2,
    normalize_country3,
    postal_main_part,
)
from shipping_gateway.models.carrier import CarrierType
from shipping_gateway.models.shipment import (
    Amount,
    DistanceUnit,
    HistoryItem,
    Label,
    LabelFormat,
    Shipment,
    ShippingRate,
    TrackInfo,
    TrackStatus,
    WeightUnit,
)
from shipping_gateway.modules.shipping.session import ConnectionParameters, ShippingSession, User
from shipping_gateway.modules.shipping.system import (
    OP_CREATE_LABEL,
    OP_ESTIMATE_SHIPPING_COST,
    OP_TRACK_SHIPMENT,
    OP_VALIDATE_ADDRESS,
    Capabilities,
    ShippingSystem,
)
from shipping_gateway.modules.shipping.systems import register_system

logger = logging.getLogger(__name__)

SHIPPO_REALM = "shippo"

PURCHASE_PURPOSE = "PURCHASE"
STATUS_SUCCESS = "SUCCESS"
STATUS_VALID = "VALID"
STATUS_INVALID = "INVALID"
CODE_INVALID = "Invalid"

HDR_AUTHORIZATION = "Authorization"
HDR_AUTHORIZATION_SCHEME = "ShippoToken"

URI_TRANSACTIONS = "/v1/transactions"
URI_RATES = "/v1/rates/{rate_id}"
URI_TRACKING = "/v1/tracks/{carrier_code}/{tracking_number}"
URI_ADDRESS = "/v1/addresses"
URI_SHIPMENTS = "/v1/shipments"
URI_TRACKING_BY_NUM = "{domain}/{carrier_id}/{tracking_number}"

OPERATION_FAILED = "Shipping operation failed"

FORMATS = {
    LabelFormat.PDF: "PDF",
    LabelFormat.PDF_4X6: "PDF_4X6",
    LabelFormat.PNG: "PNG",
    LabelFormat.ZPLII: "ZPLII",
}

DIST_UNITS = {
    DistanceUnit.CM: "cm",
    DistanceUnit.IN: "in",
    DistanceUnit.FT: "ft",
    DistanceUnit.MM: "mm",
    DistanceUnit.M: "m",
    DistanceUnit.YD: "yd",
}

WEIGHT_UNITS = {
    WeightUnit.G: "g",
    WeightUnit.OZ: "oz",
    WeightUnit.LB: "lb",
    WeightUnit.KG: "kg",
}

CARRIERS = {
    CarrierType.USPS: "usps",
    CarrierType.DHL_EXPRESS: "dhl_express",
    CarrierType.FEDEX: "fedex",
    CarrierType.UPS: "ups",
}

TRACK_STATUSES = {
    "UNKNOWN": TrackStatus.UNKNOWN,
    "DELIVERED": TrackStatus.DELIVERED,
    "TRANSIT": TrackStatus.TRANSIT,
    "FAILURE": TrackStatus.FAILURE,
    "RETURNED": TrackStatus.RETURNED,
}

SHIPPO_CAPABILITIES = Capabilities(
    supports_label_creation=True,
    supports_shipment_tracking=True,
    supports_address_validation=True,
    supports_carrier_services=True,
    supports_shipping_cost_estimation=True,
)


@dataclass
class ShippoCredentials:
    """Shippo API credentials."""
    private_token: str

    def __repr__(self) -> str:
        return "ShippoCredentials(private_token=***)"


class ShippoConnectionParameters(ConnectionParameters):
    """Connection parameters carrying a ShippoCredentials user."""

    @classmethod
    def from_section(cls, section: Dict[str, Any]) -> "ShippoConnectionParameters":
        token = section.get("private-token") or section.get("private_token") or ""
        name = section.get("name") or SHIPPO_REALM
        return cls(
            name=name,
            user=User(name=name, credentials=ShippoCredentials(private_token=token)),
        )


class ShippoSession(ShippingSession):
    """Session bound to one Shippo private token."""

    @property
    def credentials(self) -> ShippoCredentials:
        if self.user is None or not isinstance(self.user.credentials, ShippoCredentials):
            raise ShippingError("Shippo session has no Shippo credentials")
        return self.user.credentials


# =============================================================================
# Shippo value helpers
# =============================================================================

def _as_str(value: Any, default: Optional[str] = None) -> Optional[str]:
    if value is None:
        return default
    return str(value)


def _as_decimal(value: Any) -> Optional[Decimal]:
    """Parse a provider amount; None when missing, unparsable or not finite."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


def _parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 date; anything unparsable is ignored."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _decimal_str(value: Decimal) -> str:
    return format(Decimal(value), "f")


def _first_message(response: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    messages = response.get("messages")
    if isinstance(messages, list) and messages and isinstance(messages[0], dict):
        return messages[0]
    return None


@register_system(SHIPPO_REALM)
class ShippoSystem(ShippingSystem):
    """
    Shippo shipping system.

    Configuration section example:
        {"name": "shippo", "type": "shippo",
         "default-session-connect-params": {"private-token": "shippo_test_..."},
         "carriers": [...]}
    """

    def __init__(self, name: str, node: Optional[Any] = None, web_client: Optional[JSONWebClient] = None, **kwargs):
        self._web_client = web_client
        self._web_client_lock = Lock()
        self.api_base = settings.SHIPPO_API_BASE.rstrip("/")
        self.tracking_domain = settings.SHIPPO_TRACKING_DOMAIN.rstrip("/")
        super().__init__(name, node, **kwargs)

    # =========================================================================
    # Infrastructure
    # =========================================================================

    @property
    def capabilities(self) -> Capabilities:
        return SHIPPO_CAPABILITIES

    def do_start_session(self, params: Optional[ConnectionParameters] = None) -> ShippoSession:
        params = params or self.default_session_connect_params
        return ShippoSession(self, params)

    def make_default_session_connect_params(self, section: Dict[str, Any]) -> ConnectionParameters:
        return ShippoConnectionParameters.from_section(section)

    def stop(self) -> None:
        super().stop()
        if self._web_client is not None:
            self._web_client.close()

    def _get_web_client(self) -> JSONWebClient:
        client = self._web_client
        if client is None:
            with self._web_client_lock:
                if self._web_client is None:
                    # JSONWebClient reads a 0 timeout as "no timeout"
                    self._web_client = JSONWebClient(
                        timeout=self.web_service_call_timeout_ms / 1000.0,
                        keep_alive=self.keep_alive,
                    )
                    logger.debug(
                        f"Shippo web client for {self.name}: base={self.api_base} "
                        f"timeout={self.web_service_call_timeout_ms}ms"
                    )
                client = self._web_client
        return client

    def _request(
        self,
        session: ShippingSession,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        credentials = self._credentials(session)
        headers = {HDR_AUTHORIZATION: f"{HDR_AUTHORIZATION_SCHEME} {credentials.private_token}"}
        return self._get_web_client().get_json(
            f"{self.api_base}{path}",
            method=method,
            headers=headers,
            body=body,
        )

    def _credentials(self, session: ShippingSession) -> ShippoCredentials:
        if isinstance(session, ShippoSession):
            return session.credentials
        if session is not None and session.user is not None and isinstance(session.user.credentials, ShippoCredentials):
            return session.user.credentials
        raise ShippingError("Session does not carry Shippo credentials")

    # =========================================================================
    # Public operations
    # =========================================================================

    def create_label(self, session: ShippingSession, context: Any, shipment: Shipment) -> Label:
        return self._run_operation(
            OP_CREATE_LABEL,
            f"Creating label from {shipment.from_address} to {shipment.to_address}",
            lambda e: f"Error creating label from {shipment.from_address} to {shipment.to_address}: {e!r}",
            lambda log_id: self._do_create_label(session, context, shipment, log_id),
        )

    def track_shipment(
        self, session: ShippingSession, context: Any, carrier_id: str, tracking_number: str
    ) -> TrackInfo:
        def action(log_id: str) -> TrackInfo:
            result = self._do_track_shipment(session, context, carrier_id, tracking_number, log_id)
            result.tracking_number = tracking_number
            result.tracking_url = self.get_tracking_url(session, context, carrier_id, tracking_number)
            result.carrier_id = carrier_id
            return result

        return self._run_operation(
            OP_TRACK_SHIPMENT,
            f"Tracking shipment {tracking_number}",
            lambda e: f"Error tracking shipment {tracking_number}: {e!r}",
            action,
        )

    def get_tracking_url(
        self, session: ShippingSession, context: Any, carrier_id: str, tracking_number: str
    ) -> Optional[str]:
        url = super().get_tracking_url(session, context, carrier_id, tracking_number)
        if url:
            return url

        if not carrier_id or not carrier_id.strip() or not tracking_number or not tracking_number.strip():
            return url

        carrier = self.find_carrier(session, context, carrier_id)
        if carrier is None or carrier.type not in CARRIERS:
            return None

        return URI_TRACKING_BY_NUM.format(
            domain=self.tracking_domain,
            carrier_id=carrier_id,
            tracking_number=tracking_number,
        )

    def validate_address(
        self, session: ShippingSession, context: Any, address: Address
    ) -> Tuple[Optional[Address], Optional[AddressValidationError]]:
        return self._run_operation(
            OP_VALIDATE_ADDRESS,
            "Validating address",
            lambda e: f"Error validating address: {e!r}",
            lambda log_id: self._do_validate_address(session, context, address, log_id),
        )

    def estimate_shipping_cost(
        self, session: ShippingSession, context: Any, shipment: Shipment
    ) -> Optional[ShippingRate]:
        service_name = shipment.service.name if shipment.service else None
        return self._run_operation(
            OP_ESTIMATE_SHIPPING_COST,
            f"Estimating cost from {shipment.from_address} to {shipment.to_address} via {service_name}",
            lambda e: (
                f"Error estimating cost from {shipment.from_address} to {shipment.to_address} "
                f"via {service_name}: {e!r}"
            ),
            lambda log_id: self._do_estimate_shipping_cost(session, context, shipment, log_id),
        )

    # =========================================================================
    # Implementations
    # =========================================================================

    def _do_create_label(self, session: ShippingSession, context: Any, shipment: Shipment, log_id: str) -> Label:
        body = self._get_create_label_request_body(shipment)
        response = self._request(session, "POST", URI_TRANSACTIONS, body)

        self.write_log(logging.INFO, "_do_create_label()", f"{response}", related_to=log_id)

        self._check_response(response)

        rate = self._do_get_rate(session, _as_str(response.get("rate")), log_id)
        if rate is not None:
            amount = _as_decimal(rate.get("amount"))
            cost = Amount(_as_str(rate.get("currency"), ""), amount if amount is not None else Decimal("0"))
        else:
            cost = Amount.zero()

        label = Label(
            id=_as_str(response.get("object_id")),
            url=_as_str(response.get("label_url")),
            format=shipment.label_format,
            tracking_number=_as_str(response.get("tracking_number")),
            carrier_type=shipment.carrier.type,
            cost=cost,
        )

        self._stat(OP_CREATE_LABEL)
        return label

    def _do_get_rate(self, session: ShippingSession, rate_id: Optional[str], log_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the rate a label was bought at; None when that fails for any reason."""
        try:
            if not rate_id:
                raise ShippingError("Label response carries no rate id")
            response = self._request(session, "GET", URI_RATES.format(rate_id=rate_id))
            self._check_response(response)
            return response
        except Exception as e:
            self.write_log(
                logging.ERROR,
                "_do_get_rate()",
                f"Error fetching rate {rate_id} for label cost: {e!r}",
                error=e,
                related_to=log_id,
            )
            return None

    def _do_track_shipment(
        self, session: ShippingSession, context: Any, carrier_id: str, tracking_number: str, log_id: str
    ) -> TrackInfo:
        if not tracking_number or not tracking_number.strip():
            raise ShippingError("Tracking number is empty")

        carrier = self.find_carrier(session, context, carrier_id)
        if carrier is None:
            raise ShippingError(f"Unknown carrier: {carrier_id}")

        carrier_code = CARRIERS.get(carrier.type)
        if carrier_code is None:
            raise ShippingError(f"Unknown carrier: {carrier_id}")

        response = self._request(
            session,
            "GET",
            URI_TRACKING.format(carrier_code=carrier_code, tracking_number=tracking_number),
        )

        status = response.get("tracking_status") if isinstance(response, dict) else None
        if not isinstance(status, dict):
            raise ShippingError("Tracking status is not available")

        result = TrackInfo()
        result.status = TRACK_STATUSES.get(_as_str(status.get("status"), ""), result.status)
        result.date = _parse_date(status.get("status_date"))
        result.details = _as_str(status.get("status_details"))
        result.current_location = self._get_address_from_json(status.get("location"))

        service = response.get("servicelevel")
        if isinstance(service, dict):
            result.service_id = _as_str(service.get("name"))
        result.from_address = self._get_address_from_json(response.get("address_from"))
        result.to_address = self._get_address_from_json(response.get("address_to"))

        history = response.get("tracking_history")
        if isinstance(history, list):
            for entry in history:
                if not isinstance(entry, dict):
                    continue
                item = HistoryItem()
                item.status = TRACK_STATUSES.get(_as_str(entry.get("status"), ""), item.status)
                item.details = _as_str(entry.get("status_details"))
                item.date = _parse_date(entry.get("status_date"))
                item.current_location = self._get_address_from_json(entry.get("location"))
                result.history.append(item)

        self._stat(OP_TRACK_SHIPMENT)
        return result

    def _do_validate_address(
        self, session: ShippingSession, context: Any, address: Address, log_id: str
    ) -> Tuple[Optional[Address], Optional[AddressValidationError]]:
        body = self._get_address_body(address)
        body["validate"] = True

        response = self._request(session, "POST", URI_ADDRESS, body)
        if not isinstance(response, dict):
            raise ShippingError("Address validation response is not an object")

        self.write_log(logging.INFO, "_do_validate_address()", f"{response}", related_to=log_id)

        # Shippo can answer object_state=VALID and still flag the address
        # with a first message coded "Invalid"; both signals are checked.
        state = _as_str(response.get("object_state"), STATUS_INVALID)
        message = _first_message(response)
        code = _as_str(message.get("code"), "") if message else ""
        text = _as_str(message.get("text"), "") if message else ""

        if state.upper() != STATUS_VALID or code.lower() == CODE_INVALID.lower():
            error_message = f"Address is invalid: {text}" if text else "Address is invalid"
            self.write_log(logging.ERROR, "_do_validate_address()", error_message, related_to=log_id)
            self._stat(OP_VALIDATE_ADDRESS)
            return None, AddressValidationError(error_message, detail=text or error_message)

        self._stat(OP_VALIDATE_ADDRESS)
        return self._get_address_from_json(response), None

    def _do_estimate_shipping_cost(
        self, session: ShippingSession, context: Any, shipment: Shipment, log_id: str
    ) -> Optional[ShippingRate]:
        body = self._get_shipment_body(shipment)
        response = self._request(session, "POST", URI_SHIPMENTS, body)

        self.write_log(logging.INFO, "_do_estimate_shipping_cost()", f"{response}", related_to=log_id)

        self._check_response(response)

        rates = response.get("rates_list")
        if not isinstance(rates, list):
            self._stat(OP_ESTIMATE_SHIPPING_COST)
            return None

        result = select_best_rate(shipment, rates)
        self._stat(OP_ESTIMATE_SHIPPING_COST)
        return result

    # =========================================================================
    # Request/response mapping
    # =========================================================================

    def _check_response(self, response: Any) -> None:
        """Reject unless object_state is VALID and object_status is SUCCESS or absent."""
        if not isinstance(response, dict):
            raise ShippingError("Shippo response is empty or not an object")

        state = _as_str(response.get("object_state"), "")
        status = _as_str(response.get("object_status"), STATUS_SUCCESS)
        if state.upper() == STATUS_VALID and status.upper() == STATUS_SUCCESS:
            return

        message = _first_message(response)
        text = _as_str(message.get("text"), "") if message else ""
        if not text.strip():
            text = OPERATION_FAILED

        raise ShippingError(text, details={"object_state": state, "object_status": status})

    def _get_address_from_json(self, data: Any) -> Optional[Address]:
        if not isinstance(data, dict):
            return None

        return Address(
            person_name=_as_str(data.get("name")),
            line1=_as_str(data.get("street1")),
            line2=_as_str(data.get("street2")),
            city=_as_str(data.get("city")),
            region=_as_str(data.get("state")),
            postal=postal_main_part(_as_str(data.get("zip"))),
            country=normalize_country3(_as_str(data.get("country"))),
            phone=_as_str(data.get("phone")),
            email=_as_str(data.get("email")),
            company=_as_str(data.get("company")),
        )

    def _get_address_body(self, address: Address) -> Dict[str, Any]:
        return {
            "object_purpose": PURCHASE_PURPOSE,
            "name": address.person_name,
            "country": normalize_country2(address.country),
            "street1": address.line1,
            "street2": address.line2,
            "city": address.city,
            "state": address.region,
            "zip": address.postal,
            "phone": address.phone,
            "email": address.email,
            "company": address.company,
        }

    def _get_parcel_body(self, shipment: Shipment) -> Dict[str, Any]:
        parcel: Dict[str, Any] = {}
        if shipment.package is not None:
            parcel["template"] = shipment.package.name

        parcel["distance_unit"] = DIST_UNITS[shipment.distance_unit]
        parcel["length"] = _decimal_str(shipment.length)
        parcel["width"] = _decimal_str(shipment.width)
        parcel["height"] = _decimal_str(shipment.height)
        parcel["mass_unit"] = WEIGHT_UNITS[shipment.weight_unit]
        parcel["weight"] = _decimal_str(shipment.weight)
        return parcel

    def _add_addresses(self, target: Dict[str, Any], shipment: Shipment) -> None:
        target["address_from"] = self._get_address_body(shipment.from_address)
        target["address_to"] = self._get_address_body(shipment.to_address)
        if shipment.is_return:
            target["return_of"] = shipment.label_id_for_return
        elif shipment.return_address is not None:
            target["address_return"] = self._get_address_body(shipment.return_address)

    def _get_create_label_request_body(self, shipment: Shipment) -> Dict[str, Any]:
        shipment_body: Dict[str, Any] = {
            "object_purpose": PURCHASE_PURPOSE,
            "parcel": self._get_parcel_body(shipment),
        }
        self._add_addresses(shipment_body, shipment)

        return {
            "carrier_account": shipment.carrier.name,
            "servicelevel_token": shipment.service.name,
            "label_file_type": FORMATS[shipment.label_format],
            "async": False,
            "shipment": shipment_body,
        }

    def _get_shipment_body(self, shipment: Shipment) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "object_purpose": PURCHASE_PURPOSE,
            "parcel": self._get_parcel_body(shipment),
        }
        self._add_addresses(body, shipment)
        body["async"] = False
        return body


def select_best_rate(shipment: Shipment, rates: List[Any]) -> ShippingRate:
    """
    Pick the cheapest quote for the requested carrier/service ("appropriate"),
    or, when none matches, the cheapest quote overall flagged as alternative.

    A quote only replaces a running best in the same currency.
    """
    carrier_id = shipment.carrier.name
    service_id = shipment.service.name
    package_id = shipment.package.name if shipment.package is not None else None

    best_appropriate = ShippingRate(carrier_id=carrier_id, service_id=service_id, package_id=package_id)
    best_alternative = ShippingRate(
        carrier_id=carrier_id,
        service_id=service_id,
        package_id=package_id,
        is_alternative=True,
    )

    for rate in rates:
        if not isinstance(rate, dict):
            continue

        rate_carrier = _as_str(rate.get("carrier_account"), "")
        rate_service = _as_str(rate.get("servicelevel_token"), "")
        amount = _as_decimal(rate.get("amount_local"))
        if amount is None:
            logger.warning(f"Skipping quote with unparsable amount: {rate.get('amount_local')!r}")
            continue
        cost = Amount(_as_str(rate.get("currency_local"), ""), amount)

        if rate_carrier.lower() == carrier_id.lower() and rate_service.lower() == service_id.lower():
            if _is_better(best_appropriate.cost, cost):
                best_appropriate.cost = cost

        if _is_better(best_alternative.cost, cost):
            best_alternative.cost = cost

    return best_appropriate if best_appropriate.cost is not None else best_alternative


def _is_better(current: Optional[Amount], candidate: Amount) -> bool:
    if current is None:
        return True
    # TODO: compare across currencies once an exchange-rate source is wired in
    return current.same_currency(candidate) and current.value > candidate.value
