import pytest
from mmdb_writer import MMDBWriter
from netaddr import IPNetwork, IPSet

IPV4_ALIASES = ("::ffff:0:0/96", "2002::/16")


def alias_ipv4_subtree(writer):
    """Point the IPv4-mapped and 6to4 prefixes at the ::/96 subtree, as MaxMind's databases do."""
    ipv4_root = writer.tree
    for _ in range(96):
        ipv4_root = ipv4_root[0]

    for alias in IPV4_ALIASES:
        network = IPNetwork(alias)
        bits = [int(b) for b in bin(network.value)[2:].rjust(128, "0")[:network.prefixlen]]
        node = writer.tree
        for bit in bits[:-1]:
            node = node.get_or_create(bit)
        node[bits[-1]] = ipv4_root


def write_country_mmdb(path, entries, ip_version=4, aliased=False):
    """entries: iterable of (cidr, iso_code or None)"""
    writer = MMDBWriter(
        ip_version=ip_version,
        database_type="GeoLite2-Country",
        languages=["en"],
        description="test fixture",
        ipv4_compatible=ip_version == 6,
    )
    for cidr, iso in entries:
        if iso is None:
            record = {"continent": {"code": "EU"}}
        else:
            record = {"country": {"iso_code": iso}, "registered_country": {"iso_code": iso}}
        writer.insert_network(IPSet([IPNetwork(cidr)]), record)
    if aliased:
        alias_ipv4_subtree(writer)
    writer.to_db_file(str(path))
    return path


@pytest.fixture
def make_mmdb(tmp_path):
    counter = iter(range(1000))

    def _make(entries, ip_version=4, aliased=False):
        return write_country_mmdb(tmp_path / f"source-{next(counter)}.mmdb", entries, ip_version, aliased)

    return _make


@pytest.fixture(autouse=True)
def no_action_output(monkeypatch):
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
