"""Exception types shared across the GoodBags service."""

from typing import Optional


class GoodBagsError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(GoodBagsError):
    """A required setting is missing or malformed."""


class InvalidAddressError(GoodBagsError, ValueError):
    """A wallet, mint or config address does not parse as a Solana public key."""

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field} address: {value!r}")


class BagsApiError(GoodBagsError):
    """The Bags.fm API rejected a request or could not be reached.

    `code` is the HTTP status (None for transport failures) and `retryable`
    tells the caller whether trying again later can succeed.
    """

    def __init__(self, message: str, code: Optional[int] = None, retryable: bool = False, user_message: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.retryable = retryable
        self.user_message = user_message or message

    @classmethod
    def from_status(cls, status: int, detail: str) -> "BagsApiError":
        if status == 429:
            user_message = "Bags.fm is rate limiting requests. Please wait a minute and try again."
        elif status in (401, 403):
            user_message = "Token launches are temporarily unavailable (Bags.fm authorization failed)."
        elif status == 408 or status >= 500:
            user_message = "Bags.fm is temporarily unavailable. Please try again shortly."
        else:
            user_message = f"Bags.fm rejected the request: {detail}"
        retryable = status in (408, 429) or status >= 500
        return cls(f"Bags API error {status}: {detail}", code=status, retryable=retryable, user_message=user_message)


class ChangeApiError(GoodBagsError):
    """Non-success response from the Change nonprofit API."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"Change API error: {status} - {body}")


class LoginError(GoodBagsError):
    """X sign-in failed; `reason` is the short code shown to the browser."""

    def __init__(self, reason: str, detail: str):
        self.reason = reason
        super().__init__(f"{reason}: {detail}")


class CharityError(GoodBagsError):
    """The selected charity cannot receive royalties (unknown, unverified or no usable wallet)."""
