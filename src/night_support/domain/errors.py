"""Error taxonomy for monitoring sessions."""


class MonitoringError(Exception):
    """Base error for session and collaborator failures."""

    kind = "monitoring_error"


class PermissionDenied(MonitoringError):
    """The user refused access to location or microphone."""

    kind = "permission_denied"


class DeviceUnavailable(MonitoringError):
    """A device could not produce a reading or open a stream."""

    kind = "device_unavailable"


class NetworkFailure(MonitoringError):
    """A remote call failed or returned an unusable response."""

    kind = "network_failure"


class ResourceBusy(MonitoringError):
    """The microphone is already held by another capture."""

    kind = "resource_busy"
