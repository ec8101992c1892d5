"""Reservation provisioning into dnsmasq configuration files"""
from pathlib import Path
from typing import List, Optional
import os
import re
import subprocess
import tempfile

from dnsmasq_dhcp.logger import get_logger, operation_logger
from dnsmasq_dhcp.models.dhcp import (
    DHCPCollision,
    DHCPError,
    DHCPOptionTag,
    DHCPRecord,
    DHCPReservation,
    DHCPReservationCreate,
)
from dnsmasq_dhcp.services.dnsmasq_parser import HOSTS_DIR_NAME, OPTSFILE_NAME
from dnsmasq_dhcp.services.subnet_service import SubnetService

logger = get_logger("reservation_writer")

SANITIZE_RE = re.compile(r"[^0-9A-Za-z]")
SET_TAG_RE = re.compile(r"(?:^|,)set:([^,]+)")


def sanitize(value: str) -> str:
    """Replace every character outside [0-9A-Za-z] with an underscore."""
    return SANITIZE_RE.sub("_", value)


def write_file_atomic(path: Path, content: str) -> None:
    """Write content to a temporary file next to path and rename it over path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


class ReservationWriter:
    """Writes reservations as dnsmasq host fragments and reloads the daemon.

    Every provisioned host gets <target_dir>/dhcphosts/<mac>.conf. Boot file
    and TFTP server options are shared through tags in
    <target_dir>/dhcpopts.conf, one tag per distinct value.
    """

    def __init__(
        self,
        service: SubnetService,
        target_dir: Path,
        reload_cmd: str,
        reload_timeout: Optional[int] = 30,
    ):
        self.service = service
        self.target_dir = Path(target_dir)
        self.reload_cmd = reload_cmd
        self.reload_timeout = reload_timeout
        self._optsfile_lines: Optional[List[str]] = None

    @property
    def optsfile_path(self) -> Path:
        return self.target_dir / OPTSFILE_NAME

    @property
    def hosts_dir(self) -> Path:
        return self.target_dir / HOSTS_DIR_NAME

    def host_path(self, mac: str) -> Path:
        return self.hosts_dir / f"{sanitize(mac)}.conf"

    # Public API

    def add_reservation(self, request: DHCPReservationCreate, operator: str = "system") -> DHCPReservation:
        """Provision a reservation and reload dnsmasq.

        Raises:
            DHCPCollision: the MAC or IP is already reserved in the subnet
            DHCPError: the reload command failed (the host file is kept)
        """
        with self.service.transaction():
            subnet = self.service.find_subnet(request.ip)
            subnet_address = subnet.network if subnet else None

            existing = self.service.find_host_by_mac(subnet_address, request.mac)
            if existing:
                raise DHCPCollision(f"Reservation for {request.mac} already exists: {existing}")
            existing = self.service.find_host_by_ip(subnet_address, request.ip)
            if existing:
                raise DHCPCollision(f"Reservation for {request.ip} already exists: {existing}")

            if self.service.cleanup_due():
                self.cleanup_optsfile()
                self.service.mark_cleanup()

            options = {}
            tags = []
            if request.filename:
                tags.append(self.ensure_bootfile(request.filename))
                options["filename"] = request.filename
            if request.next_server:
                tags.append(self.ensure_tftpserver(request.next_server))
                options["next_server"] = request.next_server

            tagstring = "".join(f",set:{tag}" for tag in tags)
            write_file_atomic(
                self.host_path(request.mac),
                f"{request.mac}{tagstring},{request.ip},{request.hostname}",
            )

            record = DHCPReservation(
                hostname=request.hostname,
                ip=request.ip,
                mac=request.mac,
                subnet=subnet,
                options=options,
                deletable=True,
            )
            self.service.add_host(record)

        operation_logger.log_operation(operator, "CREATE", f"reservation {record.mac}", f"{record.ip} {record.hostname}")
        self.try_reload_cmd(operator)
        return record

    def delete_reservation(
        self,
        record: DHCPRecord,
        operator: str = "system",
    ) -> DHCPRecord:
        """Remove a provisioned reservation and reload dnsmasq.

        Leases are owned by dnsmasq and are returned untouched.

        Raises:
            DHCPError: the reload command failed
        """
        if record.kind == "lease":
            return record

        with self.service.transaction():
            path = self.host_path(record.mac)
            if path.exists():
                path.unlink()
            self.service.delete_host(record)

        operation_logger.log_operation(operator, "DELETE", f"reservation {record.mac}", f"{record.ip} {record.hostname}")
        self.try_reload_cmd(operator)
        return record

    def try_reload_cmd(self, operator: str = "system"):
        """Run the reload command, raising DHCPError unless it exits with 0."""
        logger.debug(f"Running reload command: {self.reload_cmd}")
        try:
            result = subprocess.run(self.reload_cmd, shell=True, check=False, timeout=self.reload_timeout)
        except subprocess.TimeoutExpired:
            self._reload_failed(operator, f"timed out after {self.reload_timeout}s")
        except OSError as e:
            self._reload_failed(operator, str(e))
        else:
            if result.returncode != 0:
                self._reload_failed(operator, f"exited with code {result.returncode}")

    def _reload_failed(self, operator: str, reason: str):
        logger.error(f"Reload command {self.reload_cmd} {reason}")
        operation_logger.log_operation(operator, "RELOAD", self.reload_cmd, reason, level="ERROR")
        raise DHCPError("Failed to reload configuration")

    # Option tags

    @property
    def optsfile_lines(self) -> List[str]:
        if self._optsfile_lines is None:
            if self.optsfile_path.exists():
                self._optsfile_lines = self.optsfile_path.read_text(encoding="utf-8").splitlines()
            else:
                self._optsfile_lines = []
        return self._optsfile_lines

    def _write_optsfile(self, lines: List[str]):
        """Write the option file, caching lines only once they are on disk."""
        write_file_atomic(self.optsfile_path, "\n".join(lines))
        self._optsfile_lines = lines

    def ensure_tag(self, tag: DHCPOptionTag) -> str:
        """Append an option tag to the option file unless it is present."""
        with self.service.transaction():
            prefix = f"tag:{tag.name},"
            if not any(line.startswith(prefix) for line in self.optsfile_lines):
                self._write_optsfile(self.optsfile_lines + [tag.line])
                logger.info(f"Added option tag {tag.name} for {tag.option} {tag.value}")
        return tag.name

    def ensure_bootfile(self, filename: str) -> str:
        return self.ensure_tag(DHCPOptionTag(name=f"bf_{sanitize(filename)}", option="bootfile-name", value=filename))

    def ensure_tftpserver(self, address: str) -> str:
        return self.ensure_tag(DHCPOptionTag(name=f"ns_{sanitize(address)}", option="tftp-server", value=address))

    def cleanup_optsfile(self) -> int:
        """Drop option tags that no provisioned host refers to.

        Returns:
            Number of removed option lines
        """
        with self.service.transaction():
            used = set()
            if self.hosts_dir.is_dir():
                for path in self.hosts_dir.glob("*.conf"):
                    used.update(SET_TAG_RE.findall(path.read_text(encoding="utf-8")))

            kept = []
            for line in self.optsfile_lines:
                name = line.split(",", 1)[0][len("tag:"):] if line.startswith("tag:") else None
                if name is None or name in used:
                    kept.append(line)

            removed = len(self.optsfile_lines) - len(kept)
            if removed:
                self._write_optsfile(kept)
                operation_logger.log_operation("system", "CLEANUP", str(self.optsfile_path), f"removed {removed} unused tags")
            return removed
