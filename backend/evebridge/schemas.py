# evebridge/schemas.py
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

UNKNOWN = "Unknown"


# ------------------------- Sotto-record eve -------------------------

class SubRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Alert(SubRecord):
    action: str = ""
    gid: int = 0
    signature_id: int = 0
    rev: int = 0
    signature: str = ""
    category: str = ""
    severity: int = 0
    metadata: dict[str, Any] | None = None


class SSHEndpoint(SubRecord):
    proto_version: str = ""
    software_version: str = ""


class SSHData(SubRecord):
    client: SSHEndpoint = SSHEndpoint()
    server: SSHEndpoint = SSHEndpoint()


class HTTPData(SubRecord):
    hostname: str = ""
    url: str = ""
    http_user_agent: str = ""
    http_method: str = ""
    protocol: str = ""
    status: int = 0
    length: int = 0
    request_headers: Any = None
    response_headers: Any = None


class DNSData(SubRecord):
    type: str = ""
    query: str = ""
    answer: Any = None
    rcode: str = ""


class TLSData(SubRecord):
    subject: str = ""
    issuer: str = ""
    sni: str = ""
    version: str = ""
    notbefore: str = ""
    notafter: str = ""


class FlowData(SubRecord):
    pkts_toserver: int = 0
    pkts_toclient: int = 0
    bytes_toserver: int = 0
    bytes_toclient: int = 0
    start: str = ""
    end: str = ""
    age: int = 0
    state: str = ""
    reason: str = ""
    alerted: bool = False


PAYLOAD_MODELS: dict[str, type[SubRecord]] = {
    "alert": Alert,
    "ssh": SSHData,
    "http": HTTPData,
    "dns": DNSData,
    "tls": TLSData,
    "flow": FlowData,
}


# ------------------------- Evento sorgente -------------------------

class SourceEvent(BaseModel):
    """
    Record eve così come ricevuto. I sotto-record stanno in `payloads`,
    indicizzati per tipo ("alert", "ssh", ...); quello attivo è quello
    che corrisponde a `event_type`, se presente.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    timestamp: str = ""
    flow_id: int | None = None
    in_iface: str = ""
    event_type: str = ""
    src_ip: str = ""
    src_port: int = 0
    dest_ip: str = ""
    dest_port: int = 0
    proto: str = ""
    metadata: dict[str, Any] | None = None
    payloads: dict[str, SubRecord] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _split_payloads(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        # null → default del campo (eve emette null su alcuni campi opzionali)
        core = {k: v for k, v in data.items() if v is not None and k not in PAYLOAD_MODELS}
        payloads = {}
        for kind, model in PAYLOAD_MODELS.items():
            sub = data.get(kind)
            if sub is None:
                continue
            payloads[kind] = sub if isinstance(sub, model) else model.model_validate(sub)
        core["payloads"] = payloads
        return core

    @property
    def kind(self) -> str:
        return self.event_type

    @property
    def active_payload(self) -> SubRecord | None:
        return self.payloads.get(self.event_type)

    def capabilities(self) -> frozenset[str]:
        return frozenset(self.payloads)

    @property
    def alert(self) -> Alert | None:
        return self.payloads.get("alert")

    @property
    def ssh(self) -> SSHData | None:
        return self.payloads.get("ssh")

    @property
    def http(self) -> HTTPData | None:
        return self.payloads.get("http")

    @property
    def dns(self) -> DNSData | None:
        return self.payloads.get("dns")

    @property
    def tls(self) -> TLSData | None:
        return self.payloads.get("tls")

    @property
    def flow(self) -> FlowData | None:
        return self.payloads.get("flow")


# ------------------------- Geo -------------------------

class GeoLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    country: str = UNKNOWN
    city: str = UNKNOWN
    latitude: float = 0.0
    longitude: float = 0.0
    asn: int | None = None
    isp: str | None = None
    resolved: bool = False

    @classmethod
    def unknown(cls) -> "GeoLocation":
        return cls()


# ------------------------- Evento normalizzato (wire + DB) -------------------------

class NormalizedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: int
    timestamp: datetime
    event_type: str = ""
    src_ip: str = ""
    src_port: int = 0
    dest_ip: str = ""
    dest_port: int = 0
    protocol: str = ""

    # solo per alert
    signature: str = ""
    severity: int = 0
    category: str = ""
    action: str = ""

    # sempre valorizzati: risolti oppure "Unknown"/0
    country: str = UNKNOWN
    city: str = UNKNOWN
    latitude: float = 0.0
    longitude: float = 0.0

    raw_payload: str = ""
    created_at: datetime


# ------------------------- Identità esplicita -------------------------

class TenantContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: int = Field(gt=0)
    user_id: int | None = None


class BanAction(BaseModel):
    action: Literal["ban", "unban"]
    ip: str
    reason: str = ""
    timestamp: int
