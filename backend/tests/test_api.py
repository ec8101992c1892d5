"""Tests for the DHCP HTTP endpoints"""
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from dnsmasq_dhcp.main import create_app
from dnsmasq_dhcp.services.dnsmasq_parser import DnsmasqConfigParser
from dnsmasq_dhcp.services.reservation_writer import ReservationWriter
from dnsmasq_dhcp.services.subnet_service import SubnetService

CONFIG = "\n".join([
    "dhcp-range=lan,192.168.1.10,192.168.1.100,255.255.255.0,12h",
    "dhcp-range=lab,10.0.0.10,10.0.0.100,255.255.255.0,1h",
    "dhcp-option=lan,option:router,192.168.1.1",
    "dhcp-host=00:11:22:33:44:55,192.168.1.5,printer",
])
LEASES = "1700000000 00:11:22:33:44:aa 192.168.1.20 laptop\n1700000000 00:11:22:33:44:bb 10.0.0.20 *\n"


def make_client(tmp: Path, reload_cmd: str = "true") -> TestClient:
    conf = tmp / "dnsmasq.conf"
    conf.write_text(CONFIG)
    (tmp / "dnsmasq.leases").write_text(LEASES)
    parser = DnsmasqConfigParser([conf], tmp / "state", interfaces=[])
    service = SubnetService(parser, lease_file=tmp / "dnsmasq.leases")
    writer = ReservationWriter(service, tmp / "state", reload_cmd=reload_cmd, reload_timeout=10)
    return TestClient(create_app(subnet_service=service, reservation_writer=writer))


@pytest.fixture
def client(tmp_path):
    with make_client(tmp_path) as client:
        yield client


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "watcher": None}


def test_get_subnets(client):
    response = client.get("/api/dhcp/subnets")

    assert response.status_code == 200
    subnets = {s["id"]: s for s in response.json()}
    assert set(subnets) == {"lan", "lab"}
    assert subnets["lan"]["network"] == "192.168.1.0"
    assert subnets["lan"]["ttl"] == 43200
    assert subnets["lan"]["options"]["routers"] == ["192.168.1.1"]


def test_get_subnet_by_network(client):
    assert client.get("/api/dhcp/subnets/10.0.0.0").json()["id"] == "lab"
    assert client.get("/api/dhcp/subnets/172.16.0.0").status_code == 404


def test_get_reservations_and_leases(client):
    reservations = client.get("/api/dhcp/reservations").json()
    assert [r["mac"] for r in reservations] == ["00:11:22:33:44:55"]
    assert reservations[0]["kind"] == "reservation"
    assert reservations[0]["deletable"] is False

    leases = client.get("/api/dhcp/leases", params={"network": "10.0.0.0"}).json()
    assert [lease["mac"] for lease in leases] == ["00:11:22:33:44:bb"]
    assert leases[0]["kind"] == "lease"

    assert client.get("/api/dhcp/leases", params={"network": "172.16.0.0"}).status_code == 404


def test_get_all(client):
    data = client.get("/api/dhcp/all").json()

    assert len(data["subnets"]) == 2
    assert len(data["reservations"]) == 1
    assert len(data["leases"]) == 2


def test_create_and_delete_reservation(client, tmp_path):
    payload = {"hostname": "web01", "mac": "AA:BB:CC:DD:EE:01", "ip": "192.168.1.50", "filename": "pxelinux.0"}

    response = client.post("/api/dhcp/reservations", json=payload)

    assert response.status_code == 200
    created = response.json()
    assert created["mac"] == "aa:bb:cc:dd:ee:01"
    assert created["deletable"] is True
    assert created["options"] == {"filename": "pxelinux.0"}
    assert (tmp_path / "state" / "dhcphosts" / "aa_bb_cc_dd_ee_01.conf").exists()

    assert client.post("/api/dhcp/reservations", json=payload).status_code == 409

    response = client.delete("/api/dhcp/reservations/aa:bb:cc:dd:ee:01")
    assert response.status_code == 200
    assert not (tmp_path / "state" / "dhcphosts" / "aa_bb_cc_dd_ee_01.conf").exists()

    assert client.delete("/api/dhcp/reservations/aa:bb:cc:dd:ee:01").status_code == 404


@pytest.mark.parametrize("payload", [
    {"hostname": "web01", "mac": "not-a-mac", "ip": "192.168.1.50"},
    {"hostname": "web01", "mac": "aa:bb:cc:dd:ee:01", "ip": "fd00::1"},
    {"hostname": "web 01", "mac": "aa:bb:cc:dd:ee:01", "ip": "192.168.1.50"},
    {"hostname": "web01", "mac": "aa:bb:cc:dd:ee:01", "ip": "192.168.1.50", "filename": "a,b"},
])
def test_create_reservation_validation(client, payload):
    assert client.post("/api/dhcp/reservations", json=payload).status_code == 422


def test_reload_failure_is_server_error(tmp_path):
    with make_client(tmp_path, reload_cmd="exit 3") as client:
        payload = {"hostname": "web01", "mac": "aa:bb:cc:dd:ee:01", "ip": "192.168.1.50"}

        response = client.post("/api/dhcp/reservations", json=payload)

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to reload configuration"


def test_delete_lease_is_a_no_op(client):
    response = client.delete("/api/dhcp/leases/00:11:22:33:44:aa")

    assert response.status_code == 200
    assert response.json()["hostname"] == "laptop"
    assert len(client.get("/api/dhcp/leases").json()) == 2
    assert client.delete("/api/dhcp/leases/00:11:22:33:44:ff").status_code == 404


def test_logs_endpoint(client):
    response = client.get("/api/logs", params={"limit": 5})

    assert response.status_code == 200
    assert isinstance(response.json(), list)
