import ipaddress
import time

import maxminddb
import pytest

from errors import EncodeError
from geoip_compiler import GeoIPCompiler, TrieBuildOptions, encode_mmdb, write_mmdb
from geoip_decoder import BuildMetadata, decode_mmdb, decode_mmdb_file


def net(text):
    return ipaddress.ip_network(text)


IPV4 = TrieBuildOptions(ip_version=4)


def test_options_from_metadata_carry_ip_version():
    metadata = BuildMetadata(ip_version=6, record_size=28, database_type="GeoLite2-Country",
                             build_epoch=1690000000)
    options = TrieBuildOptions.from_metadata(metadata, codes=["cn"])

    assert options.ip_version == 6
    assert options.record_size == 28
    assert options.build_epoch == 1690000000
    assert options.codes == ("cn",)


def test_ordered_codes():
    country_map = {"us": [], "cn": [], "jp": []}
    assert IPV4.ordered_codes(country_map) == ["cn", "jp", "us"]
    assert TrieBuildOptions(codes=("us", "cn")).ordered_codes(country_map) == ["cn", "us"]


def test_codes_are_inserted_in_ascending_order(monkeypatch):
    seen = []
    original = GeoIPCompiler._insert

    def spy(self, writer, code, network):
        seen.append(code)
        return original(self, writer, code, network)

    monkeypatch.setattr(GeoIPCompiler, "_insert", spy)
    encode_mmdb({
        "us": [net("1.2.3.0/24")],
        "cn": [net("9.9.9.0/24")],
        "jp": [net("5.5.5.0/24")],
    }, IPV4)

    assert seen == ["cn", "jp", "us"]


def test_leaf_values_are_country_codes(tmp_path):
    data = encode_mmdb({"us": [net("1.2.3.0/24")], "cn": [net("9.9.9.0/24")]}, IPV4)
    path = tmp_path / "geoip.db"
    path.write_bytes(data)

    with maxminddb.open_database(str(path), mode=maxminddb.MODE_MEMORY) as reader:
        assert reader.get("1.2.3.4") == "us"
        assert reader.get("9.9.9.9") == "cn"
        assert reader.get("4.4.4.4") is None
        assert reader.metadata().database_type == "geoip"
        assert sorted(reader.metadata().languages) == ["cn", "us"]


def test_code_filter_keeps_only_listed_codes():
    country_map = {
        "us": [net("1.2.3.0/24")],
        "cn": [net("1.1.1.0/24"), net("2.2.2.0/23")],
    }

    data = encode_mmdb(country_map, TrieBuildOptions(ip_version=4, codes=("cn",)))

    _, decoded = decode_mmdb(data)
    assert decoded == {"cn": [net("1.1.1.0/24"), net("2.2.2.0/23")]}


def test_later_code_wins_on_overlap():
    country_map = {"zz": [net("10.0.0.0/8")], "aa": [net("10.1.0.0/16")]}

    _, decoded = decode_mmdb(encode_mmdb(country_map, IPV4))

    assert decoded == {"zz": [net("10.0.0.0/8")]}


def test_earlier_code_keeps_the_rest_of_its_range():
    country_map = {"aa": [net("10.0.0.0/8")], "zz": [net("10.1.0.0/16")]}

    _, decoded = decode_mmdb(encode_mmdb(country_map, IPV4))

    assert decoded["zz"] == [net("10.1.0.0/16")]
    assert sum(n.num_addresses for n in decoded["aa"]) == 2 ** 24 - 2 ** 16
    assert not any(n.overlaps(net("10.1.0.0/16")) for n in decoded["aa"])


def test_encoding_is_deterministic(monkeypatch):
    country_map = {
        "us": [net("1.2.3.0/24"), net("2600::/12")],
        "cn": [net("1.1.1.0/24"), net("240e::/20")],
        "jp": [net("5.5.5.0/24")],
    }
    options = TrieBuildOptions(ip_version=6, build_epoch=1700000000)

    monkeypatch.setattr(time, "time", lambda: 1800000000.0)
    first = encode_mmdb(country_map, options)
    monkeypatch.setattr(time, "time", lambda: 1800000005.0)
    second = encode_mmdb(dict(reversed(list(country_map.items()))), options)

    assert first == second


def test_build_epoch_comes_from_source_metadata():
    metadata = BuildMetadata(ip_version=4, record_size=24, build_epoch=1690000000)
    data = encode_mmdb({"cn": [net("1.1.1.0/24")]}, TrieBuildOptions.from_metadata(metadata))

    decoded_metadata, _ = decode_mmdb(data)
    assert decoded_metadata.build_epoch == 1690000000


@pytest.mark.parametrize("record_size", [24, 28, 32])
def test_record_size_follows_options(record_size):
    data = encode_mmdb({"cn": [net("1.1.1.0/24")], "de": [net("2001:db8::/32")]},
                       TrieBuildOptions(ip_version=6, record_size=record_size))

    metadata, decoded = decode_mmdb(data)
    assert metadata.record_size == record_size
    assert decoded == {"cn": [net("1.1.1.0/24")], "de": [net("2001:db8::/32")]}


def test_unsupported_record_size():
    with pytest.raises(EncodeError):
        GeoIPCompiler(TrieBuildOptions(record_size=20))


def test_whole_ipv4_space_in_ipv4_tree():
    data = encode_mmdb({"aa": [net("0.0.0.0/0")], "cn": [net("1.1.1.0/24")]}, IPV4)

    _, decoded = decode_mmdb(data)
    assert decoded["cn"] == [net("1.1.1.0/24")]
    assert sum(n.num_addresses for n in decoded["aa"]) == 2 ** 32 - 256


def test_whole_ipv6_space_in_ipv6_tree(tmp_path):
    data = encode_mmdb({"aa": [net("2001:db8::/32")], "zz": [net("::/0")]},
                       TrieBuildOptions(ip_version=6))
    path = tmp_path / "geoip.db"
    path.write_bytes(data)

    with maxminddb.open_database(str(path), mode=maxminddb.MODE_MEMORY) as reader:
        assert reader.get("2001:db8::1") == "zz"
        assert reader.get("8000::1") == "zz"
        assert reader.get("1.2.3.4") == "zz"


def test_round_trip_preserves_networks(make_mmdb):
    source = make_mmdb([
        ("1.2.3.0/24", "US"),
        ("8.8.8.0/24", "US"),
        ("9.9.9.0/24", "CN"),
        ("77.88.0.0/18", "RU"),
    ])
    metadata, country_map = decode_mmdb_file(source)

    _, again = decode_mmdb(encode_mmdb(country_map, TrieBuildOptions.from_metadata(metadata)))

    assert again == country_map


def test_ipv6_tree_accepts_both_families():
    data = encode_mmdb({"de": [net("2001:db8::/32")], "us": [net("1.2.3.0/24")]},
                       TrieBuildOptions(ip_version=6))

    metadata, decoded = decode_mmdb(data)
    assert metadata.ip_version == 6
    assert decoded["de"] == [net("2001:db8::/32")]
    assert net("1.2.3.0/24") in decoded["us"]


def test_ipv6_network_in_ipv4_tree_fails_whole_encode(tmp_path):
    output = tmp_path / "geoip.db"

    with pytest.raises(EncodeError):
        write_mmdb(output, {"cn": [net("1.1.1.0/24"), net("240e::/20")]}, IPV4)

    assert not output.exists()


def test_unsupported_ip_version():
    with pytest.raises(EncodeError):
        GeoIPCompiler(TrieBuildOptions(ip_version=5))


def test_write_mmdb_writes_file(tmp_path):
    output = tmp_path / "out" / "geoip-cn.db"
    data = write_mmdb(output, {"cn": [net("1.1.1.0/24")]}, IPV4)

    assert output.read_bytes() == data
