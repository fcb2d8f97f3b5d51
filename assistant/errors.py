"""
assistant/errors.py

Exception taxonomy shared by the orchestrator, flows and external clients.
- GatewayError: completion service unreachable or returned unusable text
- BackendError: calendar / mail / store failure
- ParseError: structured output could not be decoded or validated
- FlowStateError: a flow stage could not continue
- ValidationError: required fields missing before an external call
"""


class AssistantError(Exception):
    """Base class for every error raised inside the assistant."""


class GatewayError(AssistantError):
    pass


class BackendError(AssistantError):
    pass


class ParseError(AssistantError):
    pass


class FlowStateError(AssistantError):
    pass


class ValidationError(AssistantError):
    pass
