"""Remote model integration layer."""

from .base import (
    BaseLLMClient,
    GenerationRequest,
    Turn,
    KardiaError,
    ValidationError,
    PersistenceFailure,
    LLMError,
    TransportFailure,
    MalformedResponse,
    ResponseContractError,
    UnrecognizedResponseShape,
    InvalidComponent,
)
from .client import create_llm_client
from .gemini import GeminiLLMClient

__all__ = [
    "BaseLLMClient",
    "GenerationRequest",
    "Turn",
    "KardiaError",
    "ValidationError",
    "PersistenceFailure",
    "LLMError",
    "TransportFailure",
    "MalformedResponse",
    "ResponseContractError",
    "UnrecognizedResponseShape",
    "InvalidComponent",
    "GeminiLLMClient",
    "create_llm_client",
]
