"""Domain-specific exceptions"""


class PortalError(Exception):
    """Base exception for the client runtime"""

    pass


class SessionError(PortalError):
    """Session cannot be used any more; the UI must navigate to login"""

    pass


class NoSessionError(SessionError):
    """No stored credential with both tokens"""

    pass


class RefreshRejectedError(SessionError):
    """Refresh endpoint invalidated the refresh token"""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TransientNetworkError(PortalError):
    """Connectivity failure or timeout; the caller may retry"""

    pass


class ApiError(PortalError):
    """Backend returned a non-2xx response or a malformed payload"""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PartialAggregationError(PortalError):
    """Detail fetch for a single package failed; recovered locally"""

    def __init__(self, package_id: str, cause: Exception):
        self.package_id = package_id
        self.cause = cause
        super().__init__(f"Could not load details for package {package_id}: {cause}")


class UnknownShapeWarning(UserWarning):
    """No application array found under any candidate field"""

    pass
