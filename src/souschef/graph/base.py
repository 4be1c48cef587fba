"""Response envelope and errors for the Gremlin script service."""

from dataclasses import dataclass, field
from typing import Any

SUCCESS_STATUS = 200


@dataclass
class ScriptResponse:
    """Status-coded envelope returned by the script endpoint."""

    status_code: int | None
    data: list[Any] = field(default_factory=list)
    raw_response: dict[str, Any] | None = None

    @classmethod
    def from_body(cls, body: Any) -> "ScriptResponse":
        """Parse a `{status: {code}, result: {data}}` body, tolerating missing parts."""
        if not isinstance(body, dict):
            return cls(status_code=None, raw_response=None)

        status = body.get("status") or {}
        result = body.get("result") or {}
        data = result.get("data") if isinstance(result, dict) else None
        return cls(
            status_code=status.get("code") if isinstance(status, dict) else None,
            data=list(data) if isinstance(data, list) else [],
            raw_response=body,
        )

    @property
    def is_success(self) -> bool:
        """Only an exact 200 counts as success."""
        return self.status_code == SUCCESS_STATUS

    @property
    def first(self) -> Any | None:
        """First returned row, or None when the result set is empty."""
        return self.data[0] if self.data else None


class GraphClientError(Exception):
    """Base exception for graph client errors."""

    def __init__(self, message: str, status_code: int | None = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class GraphTransportError(GraphClientError):
    """Raised when the service cannot be reached or answers with a non-JSON body."""


class GraphExecutionError(GraphClientError):
    """Raised when a script returns a status code other than 200."""
