import pytest

import mediashare.services.network as network
from mediashare.services.media_types import encode_path_for_url, mime_type_for_path


@pytest.mark.parametrize(
    ("address", "expected"),
    [
        ("192.168.1.20", True),
        ("172.16.0.4", True),
        ("172.31.255.1", True),
        ("172.32.0.1", False),
        ("10.0.0.5", False),
        ("127.0.0.1", False),
        ("not-an-ip", False),
    ],
)
def test_is_lan_address(address: str, expected: bool) -> None:
    assert network.is_lan_address(address) is expected


def test_local_addresses_are_filtered_and_deduplicated(monkeypatch) -> None:
    monkeypatch.setattr(network, "_probe_outbound_address", lambda: "192.168.1.20")
    monkeypatch.setattr(
        network, "_hostname_addresses", lambda: ["127.0.1.1", "10.8.0.2", "192.168.1.20", "172.17.0.1"]
    )

    assert network.local_ip_addresses() == ["192.168.1.20", "172.17.0.1"]


def test_build_server_urls(monkeypatch) -> None:
    monkeypatch.setattr(network, "local_ip_addresses", lambda: [])

    assert network.build_server_urls("0.0.0.0", 8080) == ["http://127.0.0.1:8080/"]
    assert network.build_server_urls("192.168.0.9", 9000) == ["http://192.168.0.9:9000/"]


def test_encode_path_for_url_keeps_separators() -> None:
    assert encode_path_for_url("Trips/Rome & Milan/#1 photo?.jpg") == "Trips/Rome%20&%20Milan/%231%20photo%3F.jpg"


def test_mime_types_by_extension() -> None:
    assert mime_type_for_path("clip.MOV") == "video/mp4"
    assert mime_type_for_path("archive.unknown") == "application/octet-stream"
