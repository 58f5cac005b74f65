"""
Error taxonomy for channel onboarding.

- ValidationError     — required credential fields missing; raised before any
                        network call and never retried automatically.
- TransportError      — network failure, timeout or non-2xx from a remote
                        endpoint; triggers fallbacks where one exists.
- RemoteRejection     — the endpoint answered but reported failure.
- MalformedRemoteData — a remote value failed local validation; discarded.
"""

from typing import Iterable, List, Optional


class ChannelKitError(Exception):
    """Base class for all onboarding errors."""


class ValidationError(ChannelKitError):
    def __init__(self, platform: str, missing_fields: Iterable[str]):
        self.platform = platform
        self.missing_fields: List[str] = list(missing_fields)
        super().__init__(
            f"{platform}: missing required field(s): {', '.join(self.missing_fields)}"
        )


class TransportError(ChannelKitError):
    def __init__(self, endpoint: str, message: str = "", status_code: Optional[int] = None):
        self.endpoint = endpoint
        self.status_code = status_code
        detail = message or (f"HTTP {status_code}" if status_code else "transport failure")
        super().__init__(f"{endpoint}: {detail}")

    @property
    def is_timeout(self) -> bool:
        return "timed out" in str(self)


class RemoteRejection(ChannelKitError):
    def __init__(self, endpoint: str, detail: str = ""):
        self.endpoint = endpoint
        self.detail = detail
        super().__init__(f"{endpoint}: rejected ({detail or 'no detail'})")


class MalformedRemoteData(ChannelKitError):
    def __init__(self, field: str, detail: str = ""):
        self.field = field
        self.detail = detail
        super().__init__(f"malformed remote {field}: {detail}")


class ChannelNotFound(ChannelKitError):
    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        super().__init__(f"channel not found: {channel_id}")


class ProbeSuperseded(ChannelKitError):
    """A newer probe for the same key replaced this one."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"probe superseded: {key}")
