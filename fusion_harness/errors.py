"""Exception types raised by the harness, one per failure category."""


class HarnessError(Exception):
    """Base class for every error raised by fusion_harness."""


class ParameterValidationError(HarnessError, ValueError):
    """A parameter combination cannot describe a valid reference graph."""


class PassExecutionError(HarnessError, RuntimeError):
    """A pass raised while it was being applied."""

    def __init__(self, pass_name, cause):
        super().__init__(f"Pass '{pass_name}' failed: {cause}")
        self.pass_name = pass_name
        self.cause = cause


class PassAssertionError(HarnessError, AssertionError):
    """The fused-operator count after a pass differs from the expectation."""

    def __init__(self, graph_label, op_type, observed, expected):
        super().__init__(
            f"{graph_label} graph contains {observed} '{op_type}' node(s), expected {expected}"
        )
        self.graph_label = graph_label
        self.op_type = op_type
        self.observed = observed
        self.expected = expected


class NumericMismatchError(HarnessError, AssertionError):
    """Outputs of the transformed and reference graphs disagree beyond tolerance."""


class CompilationError(HarnessError, RuntimeError):
    """The inference engine could not compile a graph for a device."""


class CaseFailedError(HarnessError, AssertionError):
    """A test case finished abnormally through an ordinary failure."""


class CaseCrashedError(HarnessError, RuntimeError):
    """The process running a test case died."""


class CaseHungError(CaseCrashedError):
    """A test case did not finish before its deadline."""
