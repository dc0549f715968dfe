"""Tests for the world registry — lookups, DNS, graph paths."""

from pathlib import Path

import pytest

from core.world import Credentials, Host, Organization, WorldRegistry

DATA_DIR = Path(__file__).resolve().parent.parent / "data" / "neoncloud"


@pytest.fixture
def world():
    w = WorldRegistry()
    w.load_yaml(DATA_DIR / "world.yaml")
    return w


def _small_world():
    w = WorldRegistry()
    w.add_organization(Organization("acme", "Acme", host_ids=("a", "b")))
    w.add_host(Host("a", "alpha", "10.0.0.1", "alpha.acme.test",
                    organization_id="acme", connections=("b",)))
    w.add_host(Host("b", "beta", "10.0.0.2", organization_id="acme", connections=("c",)))
    w.add_host(Host("c", "gamma", "10.0.1.5"))
    w.add_host(Host("island", "island", "172.16.0.1"))
    return w


class TestLookups:
    def test_get_host(self, world):
        host = world.get_host("server-01")
        assert host.ip_address == "192.168.1.100"
        assert host.credentials == Credentials("admin", "cyberpass123", True)
        assert host.requires_vpn is True
        assert world.get_host("nope") is None

    def test_find_by_ip_and_domain(self, world):
        assert world.find_host_by_ip("8.8.8.8").id == "google-dns"
        assert world.find_host_by_domain("EXAMPLE.com.").id == "example-com"
        assert world.find_host_by_ip("1.2.3.4") is None

    def test_resolve_host(self, world):
        assert world.resolve_host("server-01").id == "server-01"
        assert world.resolve_host("192.168.1.101").id == "server-02"
        assert world.resolve_host("server-01.megacorp.local").id == "server-01"
        assert world.resolve_host("") is None

    def test_organization_indexes(self, world):
        assert world.get_organization("megacorp").name == "Megacorp Industries"
        ids = {h.id for h in world.hosts_by_organization("megacorp")}
        assert {"server-01", "server-02", "megacorp-gateway"} <= ids
        assert [c.id for c in world.contacts_by_organization("neoncloud")] == ["agent-smith"]

    def test_hosts_in_range(self, world):
        ids = [h.id for h in world.hosts_in_range("192.168.1.0/24")]
        assert ids == ["megacorp-gateway", "server-01", "server-02"]

    def test_hosts_in_range_invalid(self, world):
        with pytest.raises(ValueError):
            world.hosts_in_range("not-a-network")

    def test_content_is_consistent(self, world):
        assert world.validate() == []


class TestDNS:
    def test_all_records(self, world):
        records = world.dns_lookup("example.com")
        assert records["A"] == ["93.184.216.34"]
        assert records["MX"] == ["10 mail.example.com"]
        assert "NS" in records

    def test_single_type(self, world):
        assert world.dns_lookup("example.com", "mx") == {"MX": ["10 mail.example.com"]}
        assert world.dns_lookup("dns.google", "MX") == {"MX": []}

    def test_a_falls_back_to_ip(self, world):
        assert world.dns_lookup("dns.google", "A") == {"A": ["8.8.8.8"]}

    def test_unknown(self, world):
        assert world.dns_lookup("nowhere.invalid") == {}


class TestGraph:
    def test_neighbors_undirected(self):
        w = _small_world()
        assert [h.id for h in w.neighbors("b")] == ["a", "c"]
        assert [h.id for h in w.neighbors("c")] == ["b"]

    def test_find_path(self):
        w = _small_world()
        assert [h.id for h in w.find_path("a", "c")] == ["a", "b", "c"]
        assert [h.id for h in w.find_path("c", "a")] == ["c", "b", "a"]
        assert [h.id for h in w.find_path("a", "a")] == ["a"]

    def test_no_path(self):
        w = _small_world()
        assert w.find_path("a", "island") is None
        assert w.find_path("a", "ghost") is None

    def test_cache_invalidated_on_add(self):
        w = _small_world()
        assert w.find_path("a", "island") is None
        w.add_host(Host("bridge", "bridge", "10.9.9.9", connections=("c", "island")))
        assert [h.id for h in w.find_path("a", "island")] == ["a", "b", "c", "bridge", "island"]

    def test_content_path_to_server(self, world):
        path = [h.id for h in world.find_path("localhost", "server-01")]
        assert path == ["localhost", "neoncloud-gateway", "isp-backbone",
                        "megacorp-gateway", "server-01"]

    def test_validate_reports_dangling(self):
        w = WorldRegistry()
        w.add_host(Host("a", "a", "10.0.0.1", organization_id="ghost-org", connections=("ghost",)))
        problems = w.validate()
        assert any("ghost-org" in p for p in problems)
        assert any("unknown connection ghost" in p for p in problems)
