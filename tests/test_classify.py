"""Tests for priority, brute-force heuristic and IOC extraction."""

import json

from evebridge.ingest.classify import DEFAULT_PRIORITY, event_priority, extract_iocs, is_brute_force
from evebridge.ingest.parser import decode_source_event


def _src(**fields):
    doc = {"event_type": "alert", "src_ip": "203.0.113.5", "dest_ip": "10.0.0.1"}
    doc.update(fields)
    return decode_source_event(json.dumps(doc).encode())


def test_priority_from_alert_severity():
    assert event_priority(_src(alert={"severity": 1, "signature": "x"})) == 1


def test_priority_default_low():
    assert event_priority(_src(event_type="flow")) == DEFAULT_PRIORITY == 3


def test_brute_force_keywords_case_insensitive():
    assert is_brute_force(_src(alert={"signature": "ET SCAN Potential SSH Scan"}))
    assert is_brute_force(_src(alert={"signature": "Multiple FAILED logins"}))
    assert is_brute_force(_src(alert={"signature": "Authentication bypass attempt"}))


def test_brute_force_negative():
    assert not is_brute_force(_src(alert={"signature": "ET POLICY curl User-Agent"}))


def test_brute_force_requires_alert_event():
    assert not is_brute_force(_src(event_type="ssh"))
    assert not is_brute_force(_src(event_type="flow", alert={"signature": "ssh brute"}))


def test_iocs_ips_and_domains():
    src = _src(
        event_type="http",
        http={"hostname": "evil.example"},
        dns={"query": "c2.example"},
    )
    assert extract_iocs(src) == {
        "ip": ["203.0.113.5", "10.0.0.1"],
        "domain": ["evil.example", "c2.example"],
    }


def test_iocs_skip_invalid_ips_and_empty_domains():
    src = _src(src_ip="bogus", dest_ip="", http={"hostname": ""})
    assert extract_iocs(src) == {}


def test_iocs_duplicates_kept_by_default():
    src = _src(src_ip="8.8.8.8", dest_ip="8.8.8.8", http={"hostname": "a.example"}, dns={"query": "a.example"})
    assert extract_iocs(src)["ip"] == ["8.8.8.8", "8.8.8.8"]
    assert extract_iocs(src, unique=True) == {"ip": ["8.8.8.8"], "domain": ["a.example"]}
