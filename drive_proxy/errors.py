class DriveProxyError(Exception):
    """Base class for failures while resolving a Drive download."""


class ConfirmationTokenError(DriveProxyError):
    """The interstitial page did not contain a confirm token."""


class UpstreamTimeoutError(DriveProxyError):
    """Drive did not answer within the configured timeout."""
