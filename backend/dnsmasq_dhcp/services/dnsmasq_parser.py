"""dnsmasq configuration parser

Reads dnsmasq configuration files into subnets and static reservations, and
the files written by ReservationWriter back into provisioned reservations.
The grammar is permissive: anything that cannot be understood is logged and
skipped instead of aborting the parse.
"""
import re
import socket
from dataclasses import dataclass, field
from ipaddress import IPv4Network, ip_address, ip_network
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

import psutil

from dnsmasq_dhcp.logger import get_logger
from dnsmasq_dhcp.models.dhcp import MAC_RE, DHCPError, DHCPReservation, DHCPSubnet
from dnsmasq_dhcp.services.dhcp_options import is_list_option, option_by_code, option_by_name

logger = get_logger("parser")

IPV4_RE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")
IPV6_RE = re.compile(r"^[0-9a-fA-F.]*:[0-9a-fA-F:.]*$")
WORD_RE = re.compile(r"^\w+$")
MODE_RE = re.compile(r"^[a-z][a-z-]*$")
PREFIX_LEN_RE = re.compile(r"^\d+$")
LEASE_TIME_RE = re.compile(r"^(\d+[mhdw]?|infinite|deprecated)$")
OPTION_RE = re.compile(r"^(\d+|option6?:[\w-]+)$")

DEFAULT_TTL = 60 * 60  # one hour
LEASE_TIME_UNITS = {"m": 60, "h": 60 * 60, "d": 24 * 60 * 60, "w": 7 * 24 * 60 * 60}

OPTSFILE_NAME = "dhcpopts.conf"
HOSTS_DIR_NAME = "dhcphosts"


@dataclass
class DnsmasqTags:
    """Tag tokens found on a configuration line."""
    tags: List[str] = field(default_factory=list)
    sets: List[str] = field(default_factory=list)

    @property
    def tag(self) -> Optional[str]:
        return self.tags[0] if self.tags else None

    @property
    def set(self) -> Optional[str]:
        return self.sets[0] if self.sets else None


def parse_tags(data: List[str]) -> DnsmasqTags:
    """Remove "set:" and "tag:" tokens from data in place and return them."""
    result = DnsmasqTags()
    remaining = []
    for token in data:
        if token.startswith("set:"):
            result.sets.append(token[4:])
        elif token.startswith("tag:"):
            result.tags.append(token[4:])
        else:
            remaining.append(token)
    data[:] = remaining
    return result


def parse_lease_time(value: Optional[str]) -> int:
    """Convert a dnsmasq lease time ("12h", "45m", "3600") to seconds."""
    if not value or value in ("infinite", "deprecated"):
        return DEFAULT_TTL
    unit = LEASE_TIME_UNITS.get(value[-1])
    if unit:
        return int(value[:-1]) * unit
    return int(value)


def default_netmask(address) -> str:
    """Guess the netmask of an IPv4 range from its private block."""
    if address in ip_network("10.0.0.0/8"):
        return "255.0.0.0"
    if address in ip_network("172.16.0.0/12"):
        return "255.240.0.0"
    return "255.255.255.0"


@dataclass(frozen=True)
class NetworkInterface:
    """Address assigned to a local network interface."""
    name: str
    address: str
    netmask: str
    prefixlen: int

    @property
    def version(self) -> int:
        return ip_address(self.address).version

    @property
    def network(self):
        return ip_network(f"{self.address}/{self.prefixlen}", strict=False)

    def includes(self, address) -> bool:
        return address.version == self.version and address in self.network


def _ifindex(name: str) -> int:
    try:
        return socket.if_nametoindex(name)
    except OSError:
        return 0


def list_interfaces() -> List[NetworkInterface]:
    """List addresses of the local interfaces DHCP ranges can bind to."""
    interfaces = []
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family not in (socket.AF_INET, socket.AF_INET6) or not addr.netmask:
                continue
            try:
                address = ip_address(addr.address.split("%")[0])
                netmask = ip_address(addr.netmask)
            except ValueError:
                continue
            if address.is_loopback or address.is_link_local:
                continue
            prefixlen = bin(int(netmask)).count("1")
            interfaces.append(NetworkInterface(name, str(address), str(netmask), prefixlen))
    return sorted(interfaces, key=lambda i: _ifindex(i.name))


class SubnetBuilder:
    """Subnet fields accumulated by subnet-id during a single parse."""

    def __init__(self):
        self._data: Dict[str, dict] = {}

    def __contains__(self, subnet_id: str) -> bool:
        return subnet_id in self._data

    def ids(self) -> List[str]:
        return list(self._data)

    def _entry(self, subnet_id: str) -> dict:
        return self._data.setdefault(subnet_id, {"options": {}, "sets": set()})

    def ids_for_tags(self, tags: List[str]) -> List[str]:
        """Subnet ids named by tags, directly or through a range's "set:" tag."""
        found = []
        for subnet_id, entry in self._data.items():
            if subnet_id in tags or entry["sets"].intersection(tags):
                found.append(subnet_id)
        return found

    def merge_range(self, subnet_id: str, sets: List[str], domain: Optional[str], **fields):
        entry = self._entry(subnet_id)
        entry.update(fields)
        entry["sets"].update(sets)
        entry["options"]["range"] = [r for r in (fields.get("range_start"), fields.get("range_end")) if r]
        if domain:
            entry["options"]["domain_name"] = domain

    def set_option(self, subnet_id: str, key: Union[str, int], value):
        self._entry(subnet_id)["options"][key] = value

    def build(self) -> List[DHCPSubnet]:
        subnets = []
        for subnet_id, data in self._data.items():
            if not data.get("address") or not data.get("mask"):
                logger.debug(f"Subnet id {subnet_id} has no dhcp-range, ignoring its options")
                continue

            logger.debug(f"Parsed subnet {subnet_id} ({data['address']}) with configuration: {data}")
            subnets.append(DHCPSubnet(
                id=subnet_id,
                network=data["address"],
                netmask=data["mask"],
                interface=data.get("interface"),
                range_start=data.get("range_start"),
                range_end=data.get("range_end"),
                broadcast=data.get("broadcast"),
                mode=data.get("mode"),
                ttl=data.get("ttl", DEFAULT_TTL),
                options=dict(data["options"]),
            ))
        return subnets


class DnsmasqConfigParser:
    """Parser for dnsmasq configuration and provisioned host files."""

    def __init__(
        self,
        config_paths: List[Path],
        target_dir: Path,
        lease_file: Optional[Path] = None,
        interfaces: Optional[List[NetworkInterface]] = None,
    ):
        self.config_paths = [Path(p) for p in config_paths]
        self.target_dir = Path(target_dir)
        self.lease_file = Path(lease_file) if lease_file else None
        self._interfaces = interfaces
        # Lease time of the last parsed dhcp-range
        self.ttl: Optional[int] = None

    @property
    def interfaces(self) -> List[NetworkInterface]:
        if self._interfaces is None:
            self._interfaces = list_interfaces()
        return self._interfaces

    @property
    def optsfile_path(self) -> Path:
        return self.target_dir / OPTSFILE_NAME

    @property
    def hosts_dir(self) -> Path:
        return self.target_dir / HOSTS_DIR_NAME

    def config_files(self) -> List[Path]:
        """Expand configured paths, directories to the files they contain."""
        files = []
        for path in self.config_paths:
            if path.is_dir():
                files += sorted(p for p in path.iterdir() if p.is_file())
            elif path.exists():
                files.append(path)
            else:
                logger.warning(f"Configuration path {path} does not exist, skipping")
        return files

    def _directives(self, path: Path) -> Iterator[Tuple[str, str, str, str]]:
        """Yield (location, option, value, line) for every directive in a file."""
        with open(path, "r", encoding="utf-8") as f:
            for line_nr, line in enumerate(f, start=1):
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                option, value = line.split("=", 1)
                yield f"{path}:{line_nr}", option.strip(), value.strip(), line

    # Subnets

    def parse_subnets(self) -> List[DHCPSubnet]:
        """Parse dhcp-range and dhcp-option directives into subnets."""
        builder = SubnetBuilder()
        available: Optional[List[NetworkInterface]] = None
        domain = None

        files = self.config_files()
        logger.debug(f"Starting parse of DHCP subnets from {[str(f) for f in files]}")
        try:
            for path in files:
                logger.debug(f"  Parsing {path}...")
                for location, option, value, line in self._directives(path):
                    eligible = self.interfaces if available is None else available

                    if option == "interface":
                        if available is None:
                            available = []
                        available += [i for i in self.interfaces if i.name == value and i not in available]
                    elif option == "no-dhcp-interface":
                        available = [i for i in eligible if i.name != value]
                    elif option == "domain":
                        domain = value.split(",")[0].strip() or None
                    elif option == "dhcp-leasefile":
                        if self.lease_file is None:
                            self.lease_file = Path(value)
                    elif option == "dhcp-range":
                        self._parse_range(builder, value, location, line, eligible, domain)
                    elif option == "dhcp-option":
                        self._parse_option(builder, value, location, line, eligible)
        except (OSError, UnicodeDecodeError) as e:
            msg = f"Unable to parse subnets: {e}"
            logger.error(msg)
            raise DHCPError(msg) from e

        return builder.build()

    def _parse_range(self, builder, value, location, line, interfaces, domain):
        data = [v.strip() for v in value.split(",")]
        tags = parse_tags(data)

        initial_arg = data.pop(0) if data and WORD_RE.match(data[0]) else None
        try:
            start_addr = ip_address(data.pop(0))
        except (IndexError, ValueError):
            logger.warning(f"Invalid start address on line {location}: '{line}', skipping")
            return

        end_addr = mode = netmask = broadcast = prefix_len = lease_time = None
        if data and (IPV4_RE.match(data[0]) or IPV6_RE.match(data[0])):
            end_addr = data.pop(0)
        elif data and (data[0] == "static" or data[0].startswith("constructor:")):
            mode = data.pop(0)

        if start_addr.version == 4:
            if data and IPV4_RE.match(data[0]):
                netmask = data.pop(0)
            if data and IPV4_RE.match(data[0]):
                broadcast = data.pop(0)
        else:
            modes = [mode] if mode else []
            while data and MODE_RE.match(data[0]) and not LEASE_TIME_RE.match(data[0]):
                modes.append(data.pop(0))
            mode = ",".join(modes) or None
            if data and PREFIX_LEN_RE.match(data[0]):
                prefix_len = data.pop(0)

        if data and LEASE_TIME_RE.match(data[0]):
            lease_time = data.pop(0)

        if start_addr.version == 6:
            logger.warning(f"Skipping IPv6 subnet found on line {location}.")
            return

        if data:
            logger.warning(f"Failed to fully parse line {location}: '{line}', unparsed data: {data}")

        subnet_iface = None
        if initial_arg:
            subnet_iface = next(
                (i for i in interfaces if i.version == start_addr.version and i.name == initial_arg), None
            )
            if subnet_iface:
                initial_arg = None
        if subnet_iface is None:
            subnet_iface = next((i for i in interfaces if i.includes(start_addr)), None)

        # Always have a name for every subnet
        subnet_id = initial_arg or (subnet_iface.name if subnet_iface else None) or tags.set or "default"

        mask = netmask or (subnet_iface.netmask if subnet_iface else None) or default_netmask(start_addr)
        try:
            network: IPv4Network = ip_network(f"{start_addr}/{mask}", strict=False)
        except ValueError:
            logger.warning(f"Invalid netmask {mask} on line {location}: '{line}', skipping")
            return

        ttl = parse_lease_time(lease_time)

        builder.merge_range(
            subnet_id,
            sets=tags.sets,
            domain=domain,
            interface=subnet_iface.name if subnet_iface else None,
            address=str(network.network_address),
            mask=str(network.netmask),
            broadcast=broadcast,
            mode=mode,
            range_start=str(start_addr),
            range_end=end_addr,
            ttl=ttl,
        )
        self.ttl = ttl

    def _parse_option(self, builder, value, location, line, interfaces):
        data = [v.strip() for v in value.split(",")]
        tags = parse_tags(data)

        if tags.tags:
            subnet_ids = builder.ids_for_tags(tags.tags) or tags.tags
        elif data and data[0] in builder:
            subnet_ids = [data[0]]
        elif data and any(i.name == data[0] for i in interfaces):
            subnet_ids = [data[0]]
        else:
            subnet_ids = builder.ids()

        while data and not OPTION_RE.match(data[0]):
            data.pop(0)
        if not data:
            return

        token = data.pop(0)
        if token.startswith("option6:"):
            logger.warning(f"Skipping IPv6 DHCP option on line {location}: '{line}'")
            return
        if token.startswith("option:"):
            option = option_by_name(token[len("option:"):])
            if option is None:
                logger.warning(f"Found unknown DHCP option name on line {location}: '{line}', skipping.")
                return
        else:
            code = int(token)
            option = option_by_code(code) or code

        if isinstance(option, str) and not is_list_option(option):
            option_value = data[0] if data else None
        else:
            option_value = data

        for subnet_id in subnet_ids:
            builder.set_option(subnet_id, option, option_value)

    # Reservations

    def parse_reservations(self, find_subnet: Callable[[str], Optional[DHCPSubnet]]) -> List[DHCPReservation]:
        """Parse static and provisioned reservations.

        Subnets must be known already: find_subnet resolves the subnet of
        every reservation address. Provisioned host files come first so they
        win over a static dhcp-host for the same MAC; duplicates are included.

        Raises:
            DHCPError: a file could not be read
        """
        try:
            entries = self._parse_provisioned_hosts()
            entries += self._parse_static_hosts()
        except (OSError, UnicodeDecodeError) as e:
            msg = f"Unable to parse reservations: {e}"
            logger.error(msg)
            raise DHCPError(msg) from e

        return [
            DHCPReservation(
                hostname=entry["hostname"],
                ip=entry["ip"],
                mac=entry["mac"],
                subnet=find_subnet(entry["ip"]),
                options=entry["options"],
                deletable=entry["deletable"],
            )
            for entry in entries
        ]

    def _parse_static_hosts(self) -> List[dict]:
        entries: List[dict] = []
        files = self.config_files()
        logger.debug(f"Starting parse of DHCP reservations from {[str(f) for f in files]}")
        for path in files:
            logger.debug(f"  Parsing {path}...")
            for location, option, value, line in self._directives(path):
                if option == "dhcp-host":
                    data = [v.strip() for v in value.split(",")]
                    parse_tags(data)
                    entry = self._host_entry(data)
                    if entry is None:
                        logger.debug(f"Skipping dhcp-host without MAC and IPv4 address on line {location}")
                        continue
                    entries.append(entry)
                elif option == "dhcp-boot":
                    data = [v.strip() for v in value.split(",")]
                    tags = parse_tags(data)
                    mac = next((t.lower() for t in tags.tags if MAC_RE.match(t)), None)
                    if mac is None or not data:
                        continue

                    matching = [e for e in entries if e["mac"] == mac]
                    if not matching:
                        logger.warning(f"Found dhcp-boot for unknown host {mac} on line {location}, skipping")
                        continue

                    filename = data[0]
                    server = data[-1] if len(data) > 1 else None
                    for entry in matching:
                        entry["options"]["filename"] = filename
                        if server:
                            entry["options"]["next_server"] = server
        return entries

    @staticmethod
    def _host_entry(data: List[str]) -> Optional[dict]:
        """Pick MAC, IPv4 address and hostname out of dhcp-host fields in any order."""
        mac = ip = hostname = None
        for token in data:
            if mac is None and MAC_RE.match(token):
                mac = token.lower().replace("-", ":")
            elif ip is None and IPV4_RE.match(token):
                ip = token
            elif (
                hostname is None
                and token
                and not LEASE_TIME_RE.match(token)
                and ":" not in token
                and token != "ignore"
            ):
                hostname = token

        if mac is None or ip is None:
            return None
        return {"mac": mac, "ip": ip, "hostname": hostname, "options": {}, "deletable": False}

    def read_option_tags(self) -> Dict[str, str]:
        """Map tag names in the shared option file to their option values."""
        options: Dict[str, str] = {}
        path = self.optsfile_path
        logger.debug(f"Parsing DHCP options from {path}")
        if not path.exists():
            return options

        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                data = line.strip().split(",")
                if not data[0].startswith("tag:"):
                    continue
                tags = parse_tags(data)
                if tags.tag and data:
                    options[tags.tag] = data[-1]
        return options

    def _parse_provisioned_hosts(self) -> List[dict]:
        option_tags = self.read_option_tags()
        entries: List[dict] = []

        logger.debug(f"Parsing provisioned DHCP reservations from {self.hosts_dir}")
        if not self.hosts_dir.is_dir():
            return entries

        for path in sorted(self.hosts_dir.iterdir()):
            if not path.is_file() or path.name.startswith("."):
                continue
            logger.debug(f"  Parsing {path}...")
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    data = line.strip().split(",")
                    if not data[0] or data[0].startswith("#"):
                        continue

                    mac = data.pop(0).lower()
                    options = {}
                    tags = parse_tags(data)
                    for tag in tags.sets:
                        value = option_tags.get(tag)
                        if value is None:
                            continue
                        if tag.startswith("ns"):
                            options["next_server"] = value
                        if tag.startswith("bf"):
                            options["filename"] = value

                    if not data:
                        logger.warning(f"Provisioned host file {path} has no address, skipping")
                        continue

                    entries.append({
                        "mac": mac,
                        "ip": data[0],
                        "hostname": data[1] if len(data) > 1 else None,
                        "options": options,
                        "deletable": True,
                    })
        return entries
