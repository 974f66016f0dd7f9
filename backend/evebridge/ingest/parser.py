# evebridge/ingest/parser.py
import json
import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from ..errors import ParseError
from ..schemas import GeoLocation, NormalizedEvent, SourceEvent, TenantContext
from ..utils.geoip import GeoResolver

logger = logging.getLogger(__name__)

# Formati timestamp eve, in ordine di tentativo
TS_OFFSET_FMT = "%Y-%m-%dT%H:%M:%S.%f%z"   # 2024-01-01T00:00:00.000000-0000
TS_UTC_FMT = "%Y-%m-%dT%H:%M:%S.%fZ"       # 2024-01-01T00:00:00.000000Z


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Mai solleva: se nessun formato regge, ritorna l'ora corrente (non epoch)."""
    try:
        return datetime.strptime(value, TS_OFFSET_FMT)
    except (TypeError, ValueError):
        pass
    try:
        return datetime.strptime(value, TS_UTC_FMT).replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        pass
    logger.warning("Failed to parse timestamp %r; using ingestion time", value)
    return _now()


def decode_source_event(raw_line: bytes) -> SourceEvent:
    try:
        doc = json.loads(raw_line)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"invalid JSON: {e}") from e
    if not isinstance(doc, dict):
        raise ParseError(f"envelope is {type(doc).__name__}, expected object")
    try:
        return SourceEvent.model_validate(doc)
    except ValidationError as e:
        raise ParseError(f"invalid envelope: {e.error_count()} field error(s)") from e


def parse(raw_line: bytes, tenant: TenantContext | int, geo: GeoResolver | None = None) -> NormalizedEvent:
    """Una riga eve → NormalizedEvent. ParseError se l'envelope non è decodificabile."""
    return normalize(decode_source_event(raw_line), raw_line, tenant, geo)


def normalize(
    event: SourceEvent,
    raw_line: bytes,
    tenant: TenantContext | int,
    geo: GeoResolver | None = None,
) -> NormalizedEvent:
    if not isinstance(tenant, TenantContext):
        tenant = TenantContext(tenant_id=int(tenant))

    fields = {
        "tenant_id": tenant.tenant_id,
        "timestamp": parse_timestamp(event.timestamp),
        "event_type": event.event_type,
        "src_ip": event.src_ip,
        "src_port": event.src_port,
        "dest_ip": event.dest_ip,
        "dest_port": event.dest_port,
        "protocol": event.proto,
        "raw_payload": raw_line.decode("utf-8", errors="replace"),
        "created_at": _now(),
    }

    alert = event.alert
    if alert is not None:
        fields.update(
            signature=alert.signature,
            severity=alert.severity,
            category=alert.category,
            action=alert.action,
        )

    # solo sorgente; la destinazione resta fuori dal lookup
    loc = geo.resolve(event.src_ip) if geo is not None else GeoLocation.unknown()
    fields.update(
        country=loc.country,
        city=loc.city,
        latitude=loc.latitude,
        longitude=loc.longitude,
    )
    return NormalizedEvent(**fields)
