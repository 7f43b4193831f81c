"""Exception hierarchy shared by discovery, transfer and the command layer."""


class LocalShareError(Exception):
    """Base class for all LocalShare errors."""


# --- Discovery ---

class DiscoveryInitError(LocalShareError):
    """The mDNS daemon or the browse session could not be created."""


class DiscoveryNotRunningError(LocalShareError):
    """A command was sent to a discovery loop that is no longer running."""


class AdvertisementError(LocalShareError):
    """Advertising this device over mDNS failed."""


class DaemonCreationError(AdvertisementError):
    pass


class LocalAddressError(AdvertisementError):
    pass


class ServiceInfoError(AdvertisementError):
    pass


class RegistrationError(AdvertisementError):
    pass


# --- Transfer ---

class ConfirmationChannelError(LocalShareError):
    """Nobody is listening for transfer confirmation requests."""


class TransferTimeout(LocalShareError):
    """No accept/reject decision arrived in time."""


class TransferNotFoundError(LocalShareError):
    """No pending transfer exists for the given id."""


class NetworkError(LocalShareError):
    """An outbound send failed. The message is meant for the user."""


class ProtocolError(LocalShareError):
    """A request body could not be parsed."""


# --- Commands ---

class SettingsError(LocalShareError):
    """Settings could not be persisted."""


class CommandError(LocalShareError):
    """A UI command failed. The message is meant for the user."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code
