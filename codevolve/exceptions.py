"""Custom exception hierarchy for codevolve."""


class CodevolveError(Exception):
    """Base for all codevolve errors."""


class OracleError(CodevolveError):
    """The oracle (LLM) call failed or returned nothing usable."""


class SourceFetchError(CodevolveError):
    """A proposal source could not be read (network, auth, bad payload)."""


class ProposalStateError(CodevolveError):
    """Invalid proposal lifecycle transition."""


class WriteError(CodevolveError):
    """A file change could not be applied to the working tree."""


class RollbackError(CodevolveError):
    """Restoring the working tree to its pre-run state failed."""


class VersionControlError(CodevolveError):
    """A git or pull-request operation failed."""


class CommandTimeoutError(CodevolveError):
    """An external command exceeded its time limit."""
