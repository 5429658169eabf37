"""
Exception hierarchy for flow compilation.
"""


class FlowCompilerError(Exception):
    """Base class for all flow compilation errors."""


class MalformedPlan(FlowCompilerError):
    """Raised when the model response contains no usable plan."""


class EmptyPlan(FlowCompilerError):
    """Raised when assembly is asked to compile a plan with no email steps."""


class InvalidFlowGraph(FlowCompilerError):
    """Raised when an assembled graph is not a single linear chain."""


class ExternalCallFailure(FlowCompilerError):
    """Raised when the text-completion service or the store rejects a call."""

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")
