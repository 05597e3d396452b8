"""Client identity derivation.

A key builder turns the request context into an ordered list of
``(name, value)`` identity attributes. Requests whose attribute values
match share one counter. Host applications may supply their own builder
to count by tenant, API key or anything else they can read from the
request, or return ``None`` to exempt a request from throttling.
"""

from collections.abc import Callable, Collection, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from starlette.requests import Request

from throttle.constants import (
    REMOTE_ADDR_ATTRIBUTE,
    REMOTE_USER_ATTRIBUTE,
    USER_AGENT_ATTRIBUTE,
)


IdentityAttribute = tuple[str, str | None]
IdentityAttributes = list[IdentityAttribute]


@dataclass(frozen=True)
class RequestContext:
    """The parts of an incoming request that identify its client.

    Attributes:
        remote_user: Authenticated user identifier, if any
        remote_addr: Client network address, if known
        user_agent: Client-declared User-Agent string, if sent
        path: Request path
        headers: Read-only request headers for custom key builders
    """

    remote_user: str | None = None
    remote_addr: str | None = None
    user_agent: str | None = None
    path: str = "/"
    headers: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def from_request(
        cls,
        request: Request,
        trusted_proxies: Collection[str] = (),
    ) -> "RequestContext":
        """Build a context from a Starlette request.

        Args:
            request: The incoming request
            trusted_proxies: Peer addresses allowed to set X-Forwarded-For

        Returns:
            The request context
        """
        user_id = getattr(request.state, "user_id", None)
        return cls(
            remote_user=str(user_id) if user_id is not None else None,
            remote_addr=get_client_ip(request, trusted_proxies),
            user_agent=request.headers.get("User-Agent"),
            path=request.url.path,
            headers=request.headers,
        )


# A builder returns None (or [None]) to skip throttling for the request.
# None entries inside a longer list are dropped from the identity.
KeyBuilder = Callable[
    [RequestContext], Sequence[IdentityAttribute | None] | None
]


def get_client_ip(
    request: Request,
    trusted_proxies: Collection[str] = (),
) -> str | None:
    """Extract the client IP from a request.

    X-Forwarded-For is only honoured when the direct peer is a trusted
    proxy; otherwise any client could pick its own counter.

    Args:
        request: The incoming request
        trusted_proxies: Peer addresses allowed to set X-Forwarded-For

    Returns:
        The client IP address or None
    """
    peer = request.client.host if request.client else None

    if peer is not None and peer in trusted_proxies:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # The first entry is the original client
            return forwarded.split(",")[0].strip()

    return peer


def default_key_builder(context: RequestContext) -> IdentityAttributes:
    """Identify a client by user, address and user agent.

    Clients behind a shared gateway are told apart by user agent, and
    authenticated users by their identifier. Absent values stay ``None``.
    """
    return [
        (REMOTE_USER_ATTRIBUTE, context.remote_user),
        (REMOTE_ADDR_ATTRIBUTE, context.remote_addr),
        (USER_AGENT_ATTRIBUTE, context.user_agent),
    ]
