class ProofbuildError(Exception):
    """Base exception for all proofbuild related errors."""
    pass

class ConfigurationError(ProofbuildError):
    """Raised when a proof configuration is invalid or inconsistent."""
    pass

class WorkspaceError(ProofbuildError):
    """Raised when the proof directory layout cannot be used."""
    pass

class StageFailedError(ProofbuildError):
    """Raised when an external tool invocation ends in a hard failure.

    The failed outcome is kept on the exception so callers can report the
    status and point at the log without re-running the tool.
    """

    def __init__(self, stage: str, outcome):
        self.stage = stage
        self.outcome = outcome
        super().__init__(
            f"Stage '{stage}' failed with status {outcome.status} (see {outcome.log})"
        )

    @property
    def status(self) -> int:
        return self.outcome.status

class UnknownTargetError(ProofbuildError):
    """Raised when a build goal name is not known."""
    pass
