# evebridge/utils/geoip.py
import ipaddress
import logging
import os

import geoip2.database

from ..schemas import UNKNOWN, GeoLocation

logger = logging.getLogger(__name__)

# Range esclusi dal lookup: nessun dato geo utile, nessun errore loggato
PRIVATE_NETS = [
    ipaddress.ip_network(cidr) for cidr in (
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
]


def validate_ip(ip: str | None) -> bool:
    if not ip:
        return False
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True


def is_private_ip(ip: str | None) -> bool:
    """False anche per letterali non validi (coerente con validate_ip)."""
    if not ip:
        return False
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    # ::ffff:a.b.c.d segue le regole IPv4
    if addr.version == 6 and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return any(addr.version == net.version and addr in net for net in PRIVATE_NETS)


class GeoResolver:
    """
    Lookup GeoLite2 (city + ASN opzionale) best-effort.
    resolve() non solleva mai: senza DB o su errore ritorna il sentinel "Unknown".
    """

    def __init__(self, city_reader=None, asn_reader=None):
        self.city_reader = city_reader
        self.asn_reader = asn_reader

    @classmethod
    def open(cls, city_path: str = "", asn_path: str = "") -> "GeoResolver":
        return cls(_open_reader(city_path, "city"), _open_reader(asn_path, "asn"))

    @property
    def available(self) -> bool:
        return self.city_reader is not None

    def resolve(self, ip: str | None) -> GeoLocation:
        if not validate_ip(ip) or is_private_ip(ip):
            return GeoLocation.unknown()
        if self.city_reader is None:
            return GeoLocation.unknown()

        try:
            rec = self.city_reader.city(ip)
        except Exception as e:
            # AddressNotFoundError incluso: per il chiamante è sempre "Unknown"
            logger.debug("geo lookup failed for %s: %s", ip, e)
            return GeoLocation.unknown()

        asn, isp = self._asn(ip)
        return GeoLocation(
            country=rec.country.name or UNKNOWN,
            city=rec.city.name or UNKNOWN,
            latitude=float(rec.location.latitude or 0.0),
            longitude=float(rec.location.longitude or 0.0),
            asn=asn,
            isp=isp,
            resolved=True,
        )

    def _asn(self, ip: str) -> tuple[int | None, str | None]:
        if self.asn_reader is None:
            return None, None
        try:
            rec = self.asn_reader.asn(ip)
        except Exception as e:
            logger.debug("asn lookup failed for %s: %s", ip, e)
            return None, None
        return rec.autonomous_system_number, rec.autonomous_system_organization

    def close(self):
        for reader in (self.city_reader, self.asn_reader):
            if reader is not None:
                reader.close()
        self.city_reader = None
        self.asn_reader = None


def _open_reader(path: str, label: str):
    if not path:
        return None
    if not os.path.exists(path):
        logger.warning("GeoIP %s database not found at %s; geo enrichment disabled", label, path)
        return None
    try:
        return geoip2.database.Reader(path)
    except Exception as e:
        logger.warning("Failed to load GeoIP %s database %s: %s", label, path, e)
        return None
