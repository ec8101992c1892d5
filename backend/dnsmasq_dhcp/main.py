"""dnsmasq DHCP sync - reservation and lease service for dnsmasq"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from dnsmasq_dhcp.api import dhcp, logs
from dnsmasq_dhcp.config import settings
from dnsmasq_dhcp.logger import get_logger
from dnsmasq_dhcp.services.dnsmasq_parser import DnsmasqConfigParser
from dnsmasq_dhcp.services.lease_watcher import LeaseWatcher
from dnsmasq_dhcp.services.reservation_writer import ReservationWriter
from dnsmasq_dhcp.services.subnet_service import SubnetService

logger = get_logger("main")


def build_services():
    """Create the subnet service, writer and watcher from settings."""
    parser = DnsmasqConfigParser(
        config_paths=settings.config_paths,
        target_dir=settings.target_dir,
        lease_file=settings.lease_file,
    )
    service = SubnetService(
        parser,
        lease_file=settings.lease_file,
        cleanup_interval=settings.optsfile_cleanup_interval,
    )
    writer = ReservationWriter(
        service,
        target_dir=settings.target_dir,
        reload_cmd=settings.reload_cmd,
        reload_timeout=settings.reload_timeout,
    )
    watcher = LeaseWatcher(service, backoff_seconds=settings.watch_backoff_seconds)
    return service, writer, watcher


def create_app(
    subnet_service: Optional[SubnetService] = None,
    reservation_writer: Optional[ReservationWriter] = None,
    lease_watcher: Optional[LeaseWatcher] = None,
) -> FastAPI:
    """Create the application; services are built from settings unless given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service, writer, watcher = subnet_service, reservation_writer, lease_watcher
        if service is None:
            service, writer, watcher = build_services()

        service.load()
        app.state.subnet_service = service
        app.state.reservation_writer = writer
        app.state.lease_watcher = watcher
        if watcher is not None:
            watcher.start()
        logger.info("DHCP service started")
        try:
            yield
        finally:
            if watcher is not None:
                watcher.stop()
            logger.info("DHCP service stopped")

    app = FastAPI(
        title=settings.app_name,
        description="Subnets, reservations and leases of a dnsmasq DHCP server",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(dhcp.router)
    app.include_router(logs.router)

    @app.get("/api/health")
    async def health_check():
        watcher = getattr(app.state, "lease_watcher", None)
        return {"status": "ok", "watcher": watcher.state.value if watcher is not None else None}

    return app


app = create_app()
