"""Root of the notification exception hierarchy."""


class NotificationError(Exception):
    """Base exception for notification-related errors.

    Catching this catches every typed error raised by the certificate
    provider, renderer, resolver and transport.
    """

    pass
