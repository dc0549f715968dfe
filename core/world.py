"""World model — hosts, organizations, contacts and the network graph.

The registry is populated once at boot from ``data/<game>/world.yaml`` and is
read-only afterwards. Reverse indexes (IP, domain, organization) are kept in
step with ``add_*`` calls.
"""

from __future__ import annotations

import ipaddress
import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

log = logging.getLogger(__name__)


# ── Entities (immutable) ─────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Credentials:
    username: str
    password: str
    requires_cracking: bool = False


@dataclass(frozen=True, slots=True)
class Host:
    id: str
    name: str
    ip_address: str
    domain_name: str = ""
    organization_id: str | None = None
    role: str = ""
    description: str = ""
    dns_records: dict[str, tuple[str, ...]] = field(default_factory=dict)
    credentials: Credentials | None = None
    requires_vpn: bool = False
    ssh_enabled: bool = True
    connections: tuple[str, ...] = ()
    network_segment: str = ""
    mac_address: str = ""
    tags: tuple[str, ...] = ()
    online: bool = True

    @property
    def display_name(self) -> str:
        return self.domain_name or self.name


@dataclass(frozen=True, slots=True)
class Organization:
    id: str
    name: str
    type: str = ""
    description: str = ""
    website: str = ""
    host_ids: tuple[str, ...] = ()
    contact_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Contact:
    id: str
    name: str
    email: str = ""
    organization_id: str | None = None
    role: str = ""
    description: str = ""


# ── Builders ─────────────────────────────────────────────────────

def _host_from_dict(d: dict[str, Any]) -> Host:
    creds = d.get("credentials")
    dns = {k.upper(): tuple(v or ()) for k, v in (d.get("dns_records") or {}).items()}
    return Host(
        id=d["id"],
        name=d.get("name", d["id"]),
        ip_address=d["ip_address"],
        domain_name=d.get("domain_name", ""),
        organization_id=d.get("organization_id"),
        role=d.get("role", ""),
        description=d.get("description", ""),
        dns_records=dns,
        credentials=Credentials(
            username=creds["username"],
            password=creds["password"],
            requires_cracking=creds.get("requires_cracking", False),
        ) if creds else None,
        requires_vpn=d.get("requires_vpn", False),
        ssh_enabled=d.get("ssh_enabled", True),
        connections=tuple(d.get("connections", ())),
        network_segment=d.get("network_segment", ""),
        mac_address=d.get("mac_address", ""),
        tags=tuple(d.get("tags", ())),
        online=d.get("online", True),
    )


def _org_from_dict(d: dict[str, Any]) -> Organization:
    return Organization(
        id=d["id"], name=d.get("name", d["id"]), type=d.get("type", ""),
        description=d.get("description", ""), website=d.get("website", ""),
        host_ids=tuple(d.get("host_ids", ())),
        contact_ids=tuple(d.get("contact_ids", ())),
    )


def _contact_from_dict(d: dict[str, Any]) -> Contact:
    return Contact(
        id=d["id"], name=d.get("name", d["id"]), email=d.get("email", ""),
        organization_id=d.get("organization_id"), role=d.get("role", ""),
        description=d.get("description", ""),
    )


# ── Registry ─────────────────────────────────────────────────────

class WorldRegistry:
    """In-memory entity graph with lookup indexes."""

    def __init__(self) -> None:
        self.hosts: dict[str, Host] = {}
        self.organizations: dict[str, Organization] = {}
        self.contacts: dict[str, Contact] = {}
        self._by_ip: dict[str, str] = {}
        self._by_domain: dict[str, str] = {}
        self._hosts_by_org: dict[str, list[str]] = {}
        self._contacts_by_org: dict[str, list[str]] = {}
        self._adjacency: dict[str, set[str]] | None = None

    # ── Population ───────────────────────────────────────────────

    def add_host(self, host: Host) -> None:
        if host.id in self.hosts:
            log.warning("Duplicate host id %s, replacing", host.id)
        self.hosts[host.id] = host
        self._by_ip[host.ip_address] = host.id
        if host.domain_name:
            self._by_domain[host.domain_name.lower()] = host.id
        if host.organization_id:
            ids = self._hosts_by_org.setdefault(host.organization_id, [])
            if host.id not in ids:
                ids.append(host.id)
        self._adjacency = None

    def add_organization(self, org: Organization) -> None:
        self.organizations[org.id] = org

    def add_contact(self, contact: Contact) -> None:
        self.contacts[contact.id] = contact
        if contact.organization_id:
            ids = self._contacts_by_org.setdefault(contact.organization_id, [])
            if contact.id not in ids:
                ids.append(contact.id)

    def load_yaml(self, path: str | Path) -> None:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        for d in data.get("organizations", []):
            self.add_organization(_org_from_dict(d))
        for d in data.get("hosts", []):
            self.add_host(_host_from_dict(d))
        for d in data.get("contacts", []):
            self.add_contact(_contact_from_dict(d))
        log.info("World loaded: %d hosts, %d organizations, %d contacts",
                 len(self.hosts), len(self.organizations), len(self.contacts))
        for problem in self.validate():
            log.warning("World: %s", problem)

    # ── Lookups ──────────────────────────────────────────────────

    def get_host(self, host_id: str) -> Host | None:
        return self.hosts.get(host_id)

    def get_organization(self, org_id: str) -> Organization | None:
        return self.organizations.get(org_id)

    def get_contact(self, contact_id: str) -> Contact | None:
        return self.contacts.get(contact_id)

    def find_host_by_ip(self, ip: str) -> Host | None:
        host_id = self._by_ip.get(ip)
        return self.hosts.get(host_id) if host_id else None

    def find_host_by_domain(self, domain: str) -> Host | None:
        host_id = self._by_domain.get(domain.lower().rstrip("."))
        return self.hosts.get(host_id) if host_id else None

    def resolve_host(self, ref: str) -> Host | None:
        """Resolve a host id, IP address or domain name."""
        if not ref:
            return None
        return (
            self.hosts.get(ref)
            or self.hosts.get(ref.lower())
            or self.find_host_by_ip(ref)
            or self.find_host_by_domain(ref)
        )

    def hosts_by_organization(self, org_id: str) -> list[Host]:
        return [self.hosts[h] for h in self._hosts_by_org.get(org_id, []) if h in self.hosts]

    def contacts_by_organization(self, org_id: str) -> list[Contact]:
        return [self.contacts[c] for c in self._contacts_by_org.get(org_id, [])
                if c in self.contacts]

    def hosts_in_range(self, cidr: str) -> list[Host]:
        """Hosts whose IP falls inside cidr, in address order.

        Raises ValueError for malformed ranges.
        """
        network = ipaddress.ip_network(cidr, strict=False)
        found = []
        for host in self.hosts.values():
            try:
                addr = ipaddress.ip_address(host.ip_address)
            except ValueError:
                continue
            if addr in network:
                found.append((addr, host))
        found.sort(key=lambda pair: pair[0])
        return [h for _, h in found]

    def dns_lookup(self, name: str, record_type: str | None = None) -> dict[str, list[str]]:
        """DNS records for a domain or host id; empty dict when unknown."""
        host = self.find_host_by_domain(name) or self.hosts.get(name)
        if host is None:
            return {}
        records = {k: list(v) for k, v in host.dns_records.items()}
        if not records.get("A"):
            records["A"] = [host.ip_address]
        if record_type:
            rtype = record_type.upper()
            return {rtype: records.get(rtype, [])}
        return {k: v for k, v in records.items() if v}

    # ── Graph ────────────────────────────────────────────────────

    def _graph(self) -> dict[str, set[str]]:
        if self._adjacency is None:
            adj: dict[str, set[str]] = {h: set() for h in self.hosts}
            for host in self.hosts.values():
                for other in host.connections:
                    if other not in self.hosts:
                        continue
                    adj[host.id].add(other)
                    adj[other].add(host.id)
            self._adjacency = adj
        return self._adjacency

    def neighbors(self, host_id: str) -> list[Host]:
        return [self.hosts[h] for h in sorted(self._graph().get(host_id, ()))]

    def find_path(self, src: str, dst: str) -> list[Host] | None:
        """Shortest hop path src → dst (inclusive), or None."""
        graph = self._graph()
        if src not in graph or dst not in graph:
            return None
        prev: dict[str, str | None] = {src: None}
        todo = deque([src])
        while todo:
            node = todo.popleft()
            if node == dst:
                break
            for nxt in sorted(graph[node]):
                if nxt not in prev:
                    prev[nxt] = node
                    todo.append(nxt)
        if dst not in prev:
            return None
        path = []
        node: str | None = dst
        while node is not None:
            path.append(self.hosts[node])
            node = prev[node]
        path.reverse()
        return path

    # ── Integrity ────────────────────────────────────────────────

    def validate(self) -> list[str]:
        problems = []
        for host in self.hosts.values():
            if host.organization_id and host.organization_id not in self.organizations:
                problems.append(f"host {host.id}: unknown organization {host.organization_id}")
            for other in host.connections:
                if other not in self.hosts:
                    problems.append(f"host {host.id}: unknown connection {other}")
        for org in self.organizations.values():
            for h in org.host_ids:
                if h not in self.hosts:
                    problems.append(f"organization {org.id}: unknown host {h}")
            for c in org.contact_ids:
                if c not in self.contacts:
                    problems.append(f"organization {org.id}: unknown contact {c}")
        for contact in self.contacts.values():
            if contact.organization_id and contact.organization_id not in self.organizations:
                problems.append(f"contact {contact.id}: unknown organization {contact.organization_id}")
        return problems
