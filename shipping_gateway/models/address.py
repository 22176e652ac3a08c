"""
Postal address value type.

Country codes are normalized on every boundary crossing: outbound request
bodies carry ISO 3166-1 alpha-2, addresses parsed from provider responses
carry alpha-3.
"""
from dataclasses import dataclass
from typing import Optional

import pycountry


def _lookup_country(value: Optional[str]):
    if not value or not value.strip():
        return None
    try:
        return pycountry.countries.lookup(value.strip())
    except LookupError:
        return None


def normalize_country2(value: Optional[str]) -> Optional[str]:
    """Return the ISO 3166-1 alpha-2 code for a code or name, e.g. 'USA' -> 'US'."""
    country = _lookup_country(value)
    if country is None:
        return value.strip().upper() if value else value
    return country.alpha_2


def normalize_country3(value: Optional[str]) -> Optional[str]:
    """Return the ISO 3166-1 alpha-3 code for a code or name, e.g. 'US' -> 'USA'."""
    country = _lookup_country(value)
    if country is None:
        return value.strip().upper() if value else value
    return country.alpha_3


def postal_main_part(postal: Optional[str]) -> Optional[str]:
    """Strip the extension from a postal code: '10001-1234' -> '10001'."""
    if not postal:
        return postal
    return postal.strip().split("-")[0].strip()


@dataclass
class Address:
    """Postal address passed across the shipping boundary."""
    person_name: Optional[str] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postal: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    company: Optional[str] = None

    def same_country(self, other: "Address") -> bool:
        """True when both addresses resolve to the same country, whatever the code form."""
        return normalize_country3(self.country) == normalize_country3(other.country)

    def __str__(self) -> str:
        parts = [self.line1, self.city, self.region, self.postal, self.country]
        return ", ".join(p for p in parts if p)
