# evebridge/ingest/classify.py
from collections import defaultdict

from ..schemas import SourceEvent
from ..utils.geoip import validate_ip

# Severity Suricata: 1 = high, 2 = medium, 3 = low, 4 = info
DEFAULT_PRIORITY = 3

BRUTE_FORCE_KEYWORDS = ("ssh", "brute", "login", "authentication", "failed")


def event_priority(event: SourceEvent) -> int:
    if event.alert is not None:
        return event.alert.severity
    return DEFAULT_PRIORITY


def is_brute_force(event: SourceEvent) -> bool:
    """Classificazione solo indicativa, non blocca nulla."""
    if event.event_type != "alert" or event.alert is None:
        return False
    sig = event.alert.signature.lower()
    return any(kw in sig for kw in BRUTE_FORCE_KEYWORDS)


def extract_iocs(event: SourceEvent, unique: bool = False) -> dict[str, list[str]]:
    """
    IOC per correlazione: "ip" da src/dest validi, "domain" da hostname HTTP e query DNS.
    Di default i duplicati restano; unique=True li collassa mantenendo l'ordine.
    """
    iocs: dict[str, list[str]] = defaultdict(list)

    for ip in (event.src_ip, event.dest_ip):
        if validate_ip(ip):
            iocs["ip"].append(ip)

    if event.http is not None and event.http.hostname:
        iocs["domain"].append(event.http.hostname)
    if event.dns is not None and event.dns.query:
        iocs["domain"].append(event.dns.query)

    if unique:
        return {kind: list(dict.fromkeys(vals)) for kind, vals in iocs.items()}
    return dict(iocs)
