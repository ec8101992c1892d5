"""Well-known DHCP options"""
from typing import Dict, Optional

# option key -> code, list flag
STANDARD_OPTIONS: Dict[str, dict] = {
    "subnet_mask": {"code": 1, "is_list": False},
    "time_offset": {"code": 2, "is_list": False},
    "routers": {"code": 3, "is_list": True},
    "time_servers": {"code": 4, "is_list": True},
    "domain_name_servers": {"code": 6, "is_list": True},
    "log_servers": {"code": 7, "is_list": True},
    "hostname": {"code": 12, "is_list": False},
    "domain_name": {"code": 15, "is_list": False},
    "root_path": {"code": 17, "is_list": False},
    "interface_mtu": {"code": 26, "is_list": False},
    "broadcast_address": {"code": 28, "is_list": False},
    "static_routes": {"code": 33, "is_list": True},
    "nis_domain": {"code": 40, "is_list": False},
    "nis_servers": {"code": 41, "is_list": True},
    "ntp_servers": {"code": 42, "is_list": True},
    "netbios_name_servers": {"code": 44, "is_list": True},
    "netbios_node_type": {"code": 46, "is_list": False},
    "lease_time": {"code": 51, "is_list": False},
    "next_server": {"code": 66, "is_list": False},
    "filename": {"code": 67, "is_list": False},
    "domain_search": {"code": 119, "is_list": True},
}

# dnsmasq "option:NAME" -> option key
DNSMASQ_OPTION_NAMES: Dict[str, str] = {
    "netmask": "subnet_mask",
    "time-offset": "time_offset",
    "router": "routers",
    "time-server": "time_servers",
    "dns-server": "domain_name_servers",
    "log-server": "log_servers",
    "hostname": "hostname",
    "domain-name": "domain_name",
    "root-path": "root_path",
    "mtu": "interface_mtu",
    "broadcast": "broadcast_address",
    "static-route": "static_routes",
    "nis-domain": "nis_domain",
    "nis-server": "nis_servers",
    "ntp-server": "ntp_servers",
    "netbios-ns": "netbios_name_servers",
    "netbios-nodetype": "netbios_node_type",
    "lease-time": "lease_time",
    "tftp-server": "next_server",
    "bootfile-name": "filename",
    "domain-search": "domain_search",
}

_BY_CODE: Dict[int, str] = {v["code"]: k for k, v in STANDARD_OPTIONS.items()}


def option_by_code(code: int) -> Optional[str]:
    """Get the option key for a numeric DHCP option code."""
    return _BY_CODE.get(code)


def option_by_name(name: str) -> Optional[str]:
    """Get the option key for a dnsmasq option name (without the "option:" prefix)."""
    return DNSMASQ_OPTION_NAMES.get(name)


def is_list_option(key: str) -> bool:
    return STANDARD_OPTIONS.get(key, {}).get("is_list", False)
