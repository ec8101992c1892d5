"""DHCP API endpoints"""
from fastapi import APIRouter, HTTPException, Depends, Query, Request
from typing import List, Optional

from dnsmasq_dhcp.models.dhcp import (
    DHCPCollision,
    DHCPError,
    DHCPLease,
    DHCPReservation,
    DHCPReservationCreate,
    DHCPSubnet,
)
from dnsmasq_dhcp.services.reservation_writer import ReservationWriter
from dnsmasq_dhcp.services.subnet_service import SubnetService

router = APIRouter(prefix="/api/dhcp", tags=["dhcp"])


def get_subnet_service(request: Request) -> SubnetService:
    """Subnet service created at application startup."""
    service = getattr(request.app.state, "subnet_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="DHCP data is not loaded")
    return service


def get_reservation_writer(request: Request) -> ReservationWriter:
    writer = getattr(request.app.state, "reservation_writer", None)
    if writer is None:
        raise HTTPException(status_code=503, detail="DHCP data is not loaded")
    return writer


def get_operator(request: Request) -> str:
    """Name the requester in the operation log."""
    return request.client.host if request.client else "api"


def resolve_subnet_address(service: SubnetService, network: Optional[str]) -> Optional[str]:
    if network is None:
        return None
    if service.find_subnet_by_address(network) is None:
        raise HTTPException(status_code=404, detail=f"Subnet {network} not found")
    return network


def find_by_mac(records, mac: str):
    mac = mac.lower().replace("-", ":")
    return next((r for r in records if r.mac == mac), None)


@router.get("/subnets", response_model=List[DHCPSubnet])
async def get_subnets(service: SubnetService = Depends(get_subnet_service)):
    """Get list of DHCP subnets."""
    return service.subnets()


@router.get("/subnets/{network}", response_model=DHCPSubnet)
async def get_subnet(network: str, service: SubnetService = Depends(get_subnet_service)):
    """Get a DHCP subnet by network address."""
    subnet = service.find_subnet_by_address(network)
    if subnet is None:
        raise HTTPException(status_code=404, detail=f"Subnet {network} not found")
    return subnet


@router.get("/reservations", response_model=List[DHCPReservation])
async def get_reservations(
    network: Optional[str] = Query(None, description="Subnet network address"),
    service: SubnetService = Depends(get_subnet_service),
):
    """Get list of DHCP reservations."""
    return service.all_hosts(resolve_subnet_address(service, network))


@router.get("/leases", response_model=List[DHCPLease])
async def get_leases(
    network: Optional[str] = Query(None, description="Subnet network address"),
    service: SubnetService = Depends(get_subnet_service),
):
    """Get list of active DHCP leases."""
    return service.all_leases(resolve_subnet_address(service, network))


@router.get("/all")
async def get_all_dhcp_data(service: SubnetService = Depends(get_subnet_service)):
    """All DHCP data in a single request."""
    return {
        "subnets": service.subnets(),
        "reservations": service.all_hosts(),
        "leases": service.all_leases(),
    }


@router.post("/reservations", response_model=DHCPReservation)
def create_reservation(
    reservation: DHCPReservationCreate,
    writer: ReservationWriter = Depends(get_reservation_writer),
    operator: str = Depends(get_operator),
):
    """Create a new DHCP reservation."""
    try:
        return writer.add_reservation(reservation, operator=operator)
    except DHCPCollision as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DHCPError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/reservations/{mac}", response_model=DHCPReservation)
def delete_reservation(
    mac: str,
    network: Optional[str] = Query(None, description="Subnet network address"),
    service: SubnetService = Depends(get_subnet_service),
    writer: ReservationWriter = Depends(get_reservation_writer),
    operator: str = Depends(get_operator),
):
    """Delete a DHCP reservation."""
    record = find_by_mac(service.all_hosts(resolve_subnet_address(service, network)), mac)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Reservation for {mac} not found")

    try:
        return writer.delete_reservation(record, operator=operator)
    except DHCPError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/leases/{mac}", response_model=DHCPLease)
def delete_lease(
    mac: str,
    network: Optional[str] = Query(None, description="Subnet network address"),
    service: SubnetService = Depends(get_subnet_service),
    writer: ReservationWriter = Depends(get_reservation_writer),
):
    """Leases belong to dnsmasq; deleting one returns it unchanged."""
    record = find_by_mac(service.all_leases(resolve_subnet_address(service, network)), mac)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Lease for {mac} not found")
    return writer.delete_reservation(record)
