"""Error taxonomy.

Resolver-level errors (transport, schema, robot challenge) are raised inside
a resolver and caught at its boundary; callers of ``resolve`` never see them.
Delivery errors surface to the publisher, which reports them as ``False``.
"""


class UnfurlError(Exception):
    """Base class for all unfurl cleaner errors."""


class TransportFailure(UnfurlError):
    """Network error, timeout or non-2xx response."""


class SchemaMismatch(UnfurlError):
    """Response body did not have the expected shape."""


class RobotChallenge(UnfurlError):
    """A bot-verification page was returned instead of content."""


class DeliveryError(UnfurlError):
    """Publishing through a delegate identity failed."""


class IdentityGoneError(DeliveryError):
    """The cached delegate identity no longer exists upstream."""


class QueueCancelledError(UnfurlError):
    """A delivery action was dropped by ``clear_queue`` or cancelled mid-run."""
