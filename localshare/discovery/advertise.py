"""Advertise this device over mDNS."""

import logging
import socket
from typing import Callable

from zeroconf import ServiceInfo, Zeroconf

from localshare.config import ALIAS_PROPERTY, SERVICE_TYPE
from localshare.errors import (
    DaemonCreationError,
    LocalAddressError,
    RegistrationError,
    ServiceInfoError,
)

logger = logging.getLogger(__name__)


def get_local_ip() -> str:
    """Return the address of the interface used for the default route."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connect() only selects the outgoing interface.
        s.connect(("10.255.255.255", 1))
        return s.getsockname()[0]
    except OSError as e:
        raise LocalAddressError(f"Failed to get local IP: {e}") from e
    finally:
        s.close()


class Advertisement:
    """A registered service; keep it alive for as long as we should be discoverable."""

    def __init__(self, zeroconf: Zeroconf, info: ServiceInfo, alias: str, port: int) -> None:
        self._zeroconf = zeroconf
        self._info = info
        self.alias = alias
        self.port = port

    @property
    def name(self) -> str:
        return self._info.name

    def close(self) -> None:
        """Unregister the service and shut the daemon down."""
        logger.info(f"Withdrawing mDNS advertisement for {self.alias}")
        try:
            self._zeroconf.unregister_service(self._info)
        except Exception as e:
            logger.warning(f"Failed to unregister service: {e}")
        finally:
            self._zeroconf.close()


def register_advertisement(
    alias: str,
    port: int,
    service_type: str = SERVICE_TYPE,
    zeroconf_factory: Callable[[], Zeroconf] = Zeroconf,
    address_resolver: Callable[[], str] = get_local_ip,
) -> Advertisement:
    """
    Advertise `alias` on `port` with an `alias=<alias>` TXT record.

    Raises one of DaemonCreationError, LocalAddressError, ServiceInfoError,
    RegistrationError (all AdvertisementError).
    """
    logger.info("Registering mDNS service...")

    try:
        zeroconf = zeroconf_factory()
    except Exception as e:
        raise DaemonCreationError(f"Failed to create ServiceDaemon: {e}") from e

    try:
        ip_addr = address_resolver()
        hostname = socket.gethostname().split(".")[0] or "localshare"
        logger.info(f"  Hostname: {hostname}, IP: {ip_addr}, Port: {port}, Alias: {alias}")

        try:
            info = ServiceInfo(
                service_type,
                f"{alias}.{service_type}",
                addresses=[socket.inet_aton(ip_addr)],
                port=port,
                properties={ALIAS_PROPERTY: alias},
                server=f"{hostname}.local.",
            )
        except Exception as e:
            raise ServiceInfoError(f"Failed to create ServiceInfo: {e}") from e

        try:
            zeroconf.register_service(info)
        except Exception as e:
            raise RegistrationError(f"Failed to register service: {e}") from e
    except Exception:
        zeroconf.close()
        raise

    logger.info("Service registered successfully!")
    return Advertisement(zeroconf, info, alias, port)
