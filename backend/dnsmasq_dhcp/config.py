"""Application configuration"""
from pydantic_settings import BaseSettings
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    app_name: str = "dnsmasq DHCP sync"
    debug: bool = False

    # dnsmasq configuration files and directories to parse
    config_paths: List[Path] = [Path("/etc/dnsmasq.conf"), Path("/etc/dnsmasq.d")]
    # Directory holding dhcpopts.conf and dhcphosts/
    target_dir: Path = Path("/var/lib/dnsmasq-dhcp")
    # Falls back to dhcp-leasefile= from the configuration when unset
    lease_file: Optional[Path] = None

    # Daemon reload
    reload_cmd: str = "systemctl reload dnsmasq"
    reload_timeout: int = 30

    # Lease watcher
    watch_backoff_seconds: int = 60
    optsfile_cleanup_interval: int = 15 * 60

    # Paths
    base_dir: Path = Path(__file__).parent.parent
    project_root: Path = base_dir.parent
    logs_dir: Path = project_root / "logs"
    log_file: Path = logs_dir / "backend.log"

    class Config:
        env_prefix = "DNSMASQ_DHCP_"


settings = Settings()

# Ensure directories exist
settings.logs_dir.mkdir(parents=True, exist_ok=True)
