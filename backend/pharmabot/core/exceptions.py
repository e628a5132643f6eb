"""
Error taxonomy for remote calls and conversation turns.

PRINCIPLE: Don't expose internal details to users.
Adapters classify failures into these types; the turn handler logs the
detail internally and answers the user with an actionable next step.

Retry semantics:
    TransportError      network / timeout          retryable
    HttpError           non-2xx                    retryable only for 5xx
    DecodeError         malformed / non-JSON body  fatal
    NoFulfillmentError  no pharmacy for address    fatal, user fixes address
    ParseError          unparseable address        fatal for the turn, re-prompt
"""
import logging
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


class PharmabotError(Exception):
    """Base class for all bot errors."""


class ConfigurationError(PharmabotError, ValueError):
    """A required setting is missing."""


class RemoteServiceError(PharmabotError):
    """A call to the backend or to the messaging provider failed."""

    retryable = False

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class TransportError(RemoteServiceError):
    """Network failure or timeout. Nothing usable came back."""

    retryable = True


class HttpError(RemoteServiceError):
    """
    Non-2xx response.

    4xx means the request itself is wrong (or the resource is missing) and
    repeating it won't help. 5xx is the server's problem and may clear up.
    """

    def __init__(self, status: int, body: Any = None, url: Optional[str] = None):
        super().__init__(f"HTTP {status} from {url or 'remote service'}", url=url)
        self.status = status
        self.body = body

    @property
    def retryable(self) -> bool:
        return self.status >= 500

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class DecodeError(RemoteServiceError):
    """Response body is not JSON or doesn't have the expected shape."""


class NoFulfillmentError(PharmabotError):
    """No pharmacy services the delivery address."""

    def __init__(self, city: Optional[str] = None, pincode: Optional[str] = None):
        super().__init__(f"No pharmacy available for city={city!r}, pincode={pincode!r}")
        self.city = city
        self.pincode = pincode


class ParseError(PharmabotError):
    """
    Free-text delivery details could not be turned into an address.

    `missing` lists the field names the user still has to provide, in the
    order they are asked for in the prompt.
    """

    def __init__(self, missing: List[str], message: str = ""):
        super().__init__(message or "Missing address fields: " + ", ".join(missing))
        self.missing = missing


def describe_for_log(error: Exception) -> str:
    """One-line internal description. Never shown to users."""
    if isinstance(error, HttpError):
        return f"HttpError status={error.status} url={error.url} body={str(error.body)[:300]}"
    if isinstance(error, RemoteServiceError):
        return f"{type(error).__name__} url={error.url}: {error}"
    return f"{type(error).__name__}: {error}"
