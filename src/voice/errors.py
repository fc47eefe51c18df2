"""Exceptions raised by the relay and its legs."""

from typing import Optional


class RelayError(Exception):
    default_detail: str = "Relay error"

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class InferenceConnectError(RelayError):
    default_detail = "Could not connect to the Realtime API"


class LegClosedError(RelayError):
    default_detail = "Connection is closed"
