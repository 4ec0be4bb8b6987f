"""Error taxonomy shared by the risk engines, the services and the job executor."""


class RiskError(Exception):
    """Base class for every failure raised by the risk analyzer."""


class InvalidParameter(RiskError, ValueError):
    """Confidence outside (0, 1), horizon < 1, mismatched series lengths, ..."""


class ZeroValuePortfolio(InvalidParameter):
    """Total portfolio value is zero, so weights cannot be normalised."""


class InsufficientData(RiskError, ValueError):
    """Empty or too-short return series."""


class InvalidInput(RiskError, ValueError):
    """Return data that fails the plausibility checks (e.g. |return| >= 1)."""


class NumericalFailure(RiskError):
    """Cholesky or eigen-decomposition did not succeed."""


class NotFound(RiskError, LookupError):
    """Unknown portfolio, job or symbol."""


class UpstreamUnavailable(RiskError):
    """Every price source for a symbol was exhausted."""
