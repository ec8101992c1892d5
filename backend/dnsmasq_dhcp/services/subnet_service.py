"""In-memory view of dnsmasq subnets, reservations and leases"""
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Tuple
import threading
import time

from dnsmasq_dhcp.logger import get_logger
from dnsmasq_dhcp.models.dhcp import DHCPError, DHCPLease, DHCPReservation, DHCPSubnet
from dnsmasq_dhcp.services.dnsmasq_parser import DnsmasqConfigParser

logger = get_logger("subnet_service")

DEFAULT_LEASE_FILE = Path("/var/lib/misc/dnsmasq.leases")
DEFAULT_LEASE_TTL = 24 * 60 * 60
OPTSFILE_CLEANUP_INTERVAL = 15 * 60  # 15 minutes

# Maps are keyed by (subnet network address or None, ip/mac/name)
RecordKey = Tuple[Optional[str], str]


class LeaseSnapshot(NamedTuple):
    """Lease maps that are always replaced together."""
    by_ip: Dict[RecordKey, DHCPLease]
    by_mac: Dict[RecordKey, DHCPLease]


def _index_leases(leases: List[DHCPLease]) -> LeaseSnapshot:
    """Index leases by IP and MAC; the first lease for a subnet IP or MAC wins."""
    by_ip: Dict[RecordKey, DHCPLease] = {}
    by_mac: Dict[RecordKey, DHCPLease] = {}
    for lease in leases:
        ip_key = (lease.subnet_address, lease.ip)
        mac_key = (lease.subnet_address, lease.mac)
        if mac_key in by_mac:
            logger.debug(f"Found duplicate {by_mac[mac_key]} by MAC when adding {lease}, skipping")
            continue
        if ip_key in by_ip:
            logger.debug(f"Found duplicate {by_ip[ip_key]} by IP when adding {lease}, skipping")
            continue
        by_ip[ip_key] = lease
        by_mac[mac_key] = lease
    return LeaseSnapshot(by_ip, by_mac)


class SubnetService:
    """Shared index of subnets, reservations and leases.

    Every mutation goes through one re-entrant lock. Callers that need a
    longer read-modify-write sequence (the reservation writer) hold it via
    transaction(). The lease maps live in one LeaseSnapshot that is replaced
    by a single assignment, so readers see either the old or the new leases.
    """

    def __init__(
        self,
        parser: DnsmasqConfigParser,
        lease_file: Optional[Path] = None,
        cleanup_interval: int = OPTSFILE_CLEANUP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.parser = parser
        self._lease_file = Path(lease_file).absolute() if lease_file else None
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self.last_cleanup: Optional[float] = None

        self._lock = threading.RLock()
        self._subnets: Dict[str, DHCPSubnet] = {}
        self._reservations_by_ip: Dict[RecordKey, DHCPReservation] = {}
        self._reservations_by_mac: Dict[RecordKey, DHCPReservation] = {}
        self._reservations_by_name: Dict[str, DHCPReservation] = {}
        self._leases = LeaseSnapshot({}, {})
        self._loaded = False

    @property
    def lease_file(self) -> Path:
        if self._lease_file is None:
            # Watching needs an absolute path
            self._lease_file = (self.parser.lease_file or DEFAULT_LEASE_FILE).absolute()
        return self._lease_file

    @contextmanager
    def transaction(self) -> Iterator["SubnetService"]:
        """Hold the mutation lock for a multi-step change."""
        with self._lock:
            yield self

    def load(self) -> bool:
        """Parse configuration and load reservations and leases once."""
        with self._lock:
            if self._loaded:
                return True

            for subnet in self.parser.parse_subnets():
                self.add_subnet(subnet)
            if self._lease_file is None and self.parser.lease_file is None:
                logger.info(f"No lease file configured, using {DEFAULT_LEASE_FILE}")
            self.load_reservations_and_leases()
            self._loaded = True

        logger.info(
            f"Loaded {len(self._subnets)} subnets, {len(self._reservations_by_mac)} reservations, "
            f"{len(self._leases.by_mac)} leases"
        )
        return True

    def load_reservations_and_leases(self):
        """Merge parsed reservations and leases, dropping duplicates."""
        reservations = self.parser.parse_reservations(self.find_subnet)
        # A configuration without dhcp-range hands out no leases
        leases = self.load_leases() if self._subnets else []

        with self._lock:
            for record in reservations:
                dupe = self.find_host_by_mac(record.subnet_address, record.mac)
                if dupe:
                    logger.debug(f"Found duplicate {dupe} when adding record {record}, skipping")
                    continue
                self.add_host(record)

        self.replace_leases(leases)

    # Leases

    def _read_leases(self) -> List[DHCPLease]:
        """Read the lease file, raising OSError or UnicodeDecodeError when it cannot be read."""
        if not self._subnets:
            raise DHCPError("No subnets configured")

        leases = []
        with open(self.lease_file, "r", encoding="utf-8") as f:
            for line in f:
                fields = line.split()
                if len(fields) < 3:
                    continue
                try:
                    timestamp = int(fields[0])
                except ValueError:
                    logger.debug(f"Skipping lease line with invalid timestamp: '{line.strip()}'")
                    continue
                mac, ip = fields[1].lower(), fields[2]
                hostname = fields[3] if len(fields) > 3 and fields[3] != "*" else None

                subnet = self.find_subnet(ip)
                ttl = subnet.ttl if subnet else (self.parser.ttl or DEFAULT_LEASE_TTL)
                leases.append(DHCPLease(
                    ip=ip,
                    mac=mac,
                    hostname=hostname,
                    subnet=subnet,
                    starts=datetime.fromtimestamp(timestamp - ttl, tz=timezone.utc),
                    ends=datetime.fromtimestamp(timestamp, tz=timezone.utc),
                    state="active",
                ))
        return leases

    def load_leases(self) -> List[DHCPLease]:
        """Read all leases from the lease file.

        Raises:
            DHCPError: no subnets are loaded

        Returns:
            Parsed leases, or an empty list when the file cannot be read
        """
        try:
            return self._read_leases()
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Unable to load leases from {self.lease_file}: {e}")
            return []

    def reload_leases(self) -> bool:
        """Replace the lease snapshot from the lease file.

        A read failure keeps the previous snapshot instead of erasing it.
        """
        if not self._subnets:
            logger.debug("No subnets configured, ignoring lease file change")
            return False
        try:
            leases = self._read_leases()
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Unable to reload leases from {self.lease_file}, keeping previous leases: {e}")
            return False

        self.replace_leases(leases)
        logger.debug(f"Reloaded {len(self._leases.by_mac)} leases from {self.lease_file}")
        return True

    def replace_leases(self, leases: List[DHCPLease]):
        snapshot = _index_leases(leases)
        with self._lock:
            self._leases = snapshot

    def add_lease(self, lease: DHCPLease):
        with self._lock:
            snapshot = LeaseSnapshot(dict(self._leases.by_ip), dict(self._leases.by_mac))
            snapshot.by_ip[(lease.subnet_address, lease.ip)] = lease
            snapshot.by_mac[(lease.subnet_address, lease.mac)] = lease
            self._leases = snapshot

    def find_lease_by_mac(self, subnet_address: Optional[str], mac: str) -> Optional[DHCPLease]:
        return self._leases.by_mac.get((subnet_address, mac.lower()))

    def find_lease_by_ip(self, subnet_address: Optional[str], ip: str) -> Optional[DHCPLease]:
        return self._leases.by_ip.get((subnet_address, ip))

    def all_leases(self, subnet_address: Optional[str] = None) -> List[DHCPLease]:
        leases = self._leases.by_mac.values()
        if subnet_address is None:
            return list(leases)
        return [lease for lease in leases if lease.subnet_address == subnet_address]

    # Subnets

    def add_subnet(self, subnet: DHCPSubnet) -> bool:
        with self._lock:
            if subnet.network in self._subnets:
                logger.warning(
                    f"Subnet {subnet.cidr} ({subnet.id}) is already defined "
                    f"as {self._subnets[subnet.network].id}, skipping"
                )
                return False
            self._subnets[subnet.network] = subnet
            return True

    def subnets(self) -> List[DHCPSubnet]:
        return list(self._subnets.values())

    def find_subnet_by_address(self, network: str) -> Optional[DHCPSubnet]:
        return self._subnets.get(network)

    def find_subnet(self, ip: str) -> Optional[DHCPSubnet]:
        """Find the most specific subnet containing an address."""
        matches = [s for s in self._subnets.values() if s.includes(ip)]
        if not matches:
            return None
        return max(matches, key=lambda s: s.prefixlen)

    # Reservations

    def add_host(self, record: DHCPReservation):
        with self._lock:
            self._reservations_by_ip[(record.subnet_address, record.ip)] = record
            self._reservations_by_mac[(record.subnet_address, record.mac)] = record
            if record.hostname:
                self._reservations_by_name[record.hostname] = record

    def delete_host(self, record: DHCPReservation):
        with self._lock:
            self._reservations_by_mac.pop((record.subnet_address, record.mac), None)

            # Only drop the IP and name entries this MAC owns
            ip_key = (record.subnet_address, record.ip)
            by_ip = self._reservations_by_ip.get(ip_key)
            if by_ip is not None and by_ip.mac == record.mac:
                del self._reservations_by_ip[ip_key]

            by_name = self._reservations_by_name.get(record.hostname) if record.hostname else None
            if by_name is not None and by_name.mac == record.mac:
                del self._reservations_by_name[record.hostname]

    def find_host_by_mac(self, subnet_address: Optional[str], mac: str) -> Optional[DHCPReservation]:
        return self._reservations_by_mac.get((subnet_address, mac.lower()))

    def find_host_by_ip(self, subnet_address: Optional[str], ip: str) -> Optional[DHCPReservation]:
        return self._reservations_by_ip.get((subnet_address, ip))

    def find_host_by_name(self, hostname: str) -> Optional[DHCPReservation]:
        return self._reservations_by_name.get(hostname)

    def all_hosts(self, subnet_address: Optional[str] = None) -> List[DHCPReservation]:
        with self._lock:
            hosts = list(self._reservations_by_mac.values())
        if subnet_address is None:
            return hosts
        return [host for host in hosts if host.subnet_address == subnet_address]

    # Option file maintenance

    def cleanup_due(self) -> bool:
        """Check whether the option file cleanup interval has passed."""
        now = self._clock()
        if self.last_cleanup is None:
            self.last_cleanup = now
        return now - self.last_cleanup > self.cleanup_interval

    def mark_cleanup(self):
        self.last_cleanup = self._clock()
