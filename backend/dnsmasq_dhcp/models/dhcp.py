"""DHCP models"""
from datetime import datetime
from ipaddress import IPv4Address, IPv4Network, ip_address, ip_network
from typing import Annotated, Any, Dict, Literal, Optional, Union
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAC_RE = re.compile(r"^([0-9a-f]{2}[:-]){5}[0-9a-f]{2}$", re.IGNORECASE)


class DHCPError(RuntimeError):
    """Domain error raised by the DHCP services."""


class DHCPCollision(DHCPError):
    """A reservation already exists for the given MAC or IP."""


class DHCPSubnet(BaseModel):
    """DHCP Subnet model."""
    model_config = ConfigDict(frozen=True)

    id: str = "default"
    network: str  # "192.168.1.0"
    netmask: str  # "255.255.255.0"
    interface: Optional[str] = None
    range_start: Optional[str] = None
    range_end: Optional[str] = None
    broadcast: Optional[str] = None
    mode: Optional[str] = None
    ttl: int = 3600
    options: Dict[Any, Any] = Field(default_factory=dict)

    @property
    def ip_network(self) -> IPv4Network:
        return ip_network(f"{self.network}/{self.netmask}", strict=False)

    @property
    def prefixlen(self) -> int:
        return self.ip_network.prefixlen

    @property
    def cidr(self) -> str:
        return str(self.ip_network)

    @property
    def domain_name(self) -> Optional[str]:
        return self.options.get("domain_name")

    def includes(self, ip: str) -> bool:
        """Check whether an address belongs to this subnet."""
        try:
            return ip_address(ip) in self.ip_network
        except ValueError:
            return False


class DHCPReservation(BaseModel):
    """DHCP Reservation model."""
    kind: Literal["reservation"] = "reservation"
    id: str = ""
    hostname: Optional[str] = None
    mac: str  # "00:11:22:33:44:55"
    ip: str
    subnet: Optional[DHCPSubnet] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    deletable: bool = False

    def __init__(self, **data):
        super().__init__(**data)
        if not self.id:
            # MAC is stable across restarts
            self.id = self.mac.lower().replace(":", "-")

    @property
    def subnet_address(self) -> Optional[str]:
        return self.subnet.network if self.subnet else None

    def __str__(self) -> str:
        return f"{self.hostname or '-'} ({self.mac} / {self.ip})"


class DHCPLease(BaseModel):
    """DHCP Lease model."""
    kind: Literal["lease"] = "lease"
    ip: str
    mac: str
    hostname: Optional[str] = None
    subnet: Optional[DHCPSubnet] = None
    starts: Optional[datetime] = None
    ends: Optional[datetime] = None
    state: str = "active"

    @property
    def deletable(self) -> bool:
        return False

    @property
    def subnet_address(self) -> Optional[str]:
        return self.subnet.network if self.subnet else None

    def __str__(self) -> str:
        return f"lease {self.mac} / {self.ip}"


DHCPRecord = Annotated[Union[DHCPReservation, DHCPLease], Field(discriminator="kind")]


class DHCPOptionTag(BaseModel):
    """Named option line shared by provisioned hosts."""
    name: str
    option: str
    value: str

    @property
    def line(self) -> str:
        return f"tag:{self.name},option:{self.option},{self.value}"


class DHCPReservationCreate(BaseModel):
    """Model for creating DHCP reservation."""
    hostname: str
    mac: str
    ip: str
    filename: Optional[str] = None
    next_server: Optional[str] = None

    @field_validator("mac")
    @classmethod
    def normalize_mac(cls, value: str) -> str:
        value = value.strip()
        if not MAC_RE.match(value):
            raise ValueError(f"Invalid MAC address: {value}")
        return value.lower().replace("-", ":")

    @field_validator("ip")
    @classmethod
    def check_ipv4(cls, value: str) -> str:
        value = value.strip()
        try:
            IPv4Address(value)
        except ValueError:
            raise ValueError(f"Invalid IPv4 address: {value}")
        return value

    @field_validator("hostname")
    @classmethod
    def check_hostname(cls, value: str) -> str:
        value = value.strip()
        if not value or "," in value or any(c.isspace() for c in value):
            raise ValueError(f"Invalid hostname: {value!r}")
        return value

    @field_validator("filename", "next_server")
    @classmethod
    def strip_optional(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if "," in value:
            raise ValueError(f"Value must not contain commas: {value!r}")
        return value or None
