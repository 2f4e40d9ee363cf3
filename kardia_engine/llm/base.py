"""Base abstractions and error taxonomy for the remote model boundary."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class KardiaError(Exception):
    """Base exception for reply pipeline failures."""
    pass


class ValidationError(KardiaError):
    """Caller input rejected before anything was attempted (empty or oversized message)."""
    pass


class PersistenceFailure(KardiaError):
    """A collaborator write failed."""
    pass


class LLMError(KardiaError):
    """Base exception for remote model operations."""
    pass


TransportKind = Literal["connection", "timeout", "service-error", "envelope"]


class TransportFailure(LLMError):
    """
    The call did not produce usable model text.

    ``kind`` is one of:
        connection     - connection refused/reset, DNS failure
        timeout        - connect/read/write timeout
        service-error  - non-2xx status (``status_code`` set)
        envelope       - 2xx body without ``candidates[0].content.parts[0].text``

    Only ``connection`` and ``timeout`` are retried.
    """

    RETRYABLE_KINDS = frozenset({"connection", "timeout"})

    def __init__(self, kind: TransportKind, message: str, status_code: Optional[int] = None, detail: str = ""):
        self.kind = kind
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind in self.RETRYABLE_KINDS

    def __repr__(self):
        return f"TransportFailure(kind={self.kind!r}, status_code={self.status_code!r}, message={str(self)!r})"


class MalformedResponse(LLMError):
    """Model text could not be parsed as JSON. Never retried."""

    def __init__(self, message: str, preview: str = ""):
        self.preview = preview
        super().__init__(message)


class ResponseContractError(LLMError):
    """Model text parsed, but does not follow the reply contract."""
    pass


class UnrecognizedResponseShape(ResponseContractError):
    """No extraction rule located ``reply_components``."""

    def __init__(self, keys: List[str]):
        self.keys = sorted(keys)
        super().__init__(f"Response does not contain 'reply_components' (keys present: {self.keys})")


class InvalidComponent(ResponseContractError):
    """``reply_components`` is not a sequence, or one of its elements is invalid."""

    def __init__(self, reason: str, index: Optional[int] = None):
        self.index = index
        self.reason = reason
        where = f" at index {index}" if index is not None else ""
        super().__init__(f"Invalid reply component{where}: {reason}")


class Turn(BaseModel):
    """One conversational turn sent to the model."""
    role: Literal["user", "model"]
    text: str


class GenerationRequest(BaseModel):
    """
    Provider-neutral request payload produced by the prompt builder.

    Deterministic: equal inputs serialize to equal bodies.
    """
    system_instruction: Optional[str] = None
    contents: List[Turn] = Field(default_factory=list)

    def char_count(self) -> int:
        return len(self.system_instruction or "") + sum(len(t.text) for t in self.contents)

    def preview(self, limit: int = 200) -> str:
        """Start of the last user turn, for logs."""
        for turn in reversed(self.contents):
            if turn.role == "user":
                return turn.text[:limit]
        return ""


class BaseLLMClient(ABC):
    """
    Abstract client for the remote text model.

    Implementations return the raw model text or raise ``TransportFailure``.
    """

    @abstractmethod
    async def invoke(self, request: GenerationRequest, timeout: Optional[float] = None) -> str:
        """
        Issue the call, retrying transport failures within the configured bound.

        Returns:
            Raw model text (not yet normalized)

        Raises:
            TransportFailure: connection, timeout, service-error or envelope failure
        """
        pass

    def generation_settings(self) -> Dict[str, Any]:
        """Sampling and timeout settings, for debug logs."""
        return {}

    async def health_check(self) -> bool:
        """Whether the provider is configured and reachable. Default: assume yes."""
        return True

    async def close(self) -> None:
        """Release network resources."""
        pass
