"""Exception taxonomy for the portfolio chat assistant."""


class PortfolioChatError(Exception):
    """Base class for all application errors."""


class ValidationError(PortfolioChatError):
    """Bad input shape or size; surfaces to clients as a 4xx."""


class ScopeRejection(PortfolioChatError):
    """
    Query judged outside the portfolio domain.

    Not a failure: the orchestrator answers it with the rejection template at
    zero cost. Carries the analysis and routing decision that led to it.
    """

    def __init__(self, message: str = "Query is outside the portfolio domain", analysis=None, decision=None):
        super().__init__(message)
        self.analysis = analysis
        self.decision = decision


class BudgetExceeded(PortfolioChatError):
    """A usage limit would be breached by the requested operation."""

    def __init__(self, message: str = "Usage budget exceeded", reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class RetrievalFailure(PortfolioChatError):
    """Embedding or store call failed after retries."""


class EmbeddingValidationError(RetrievalFailure):
    """Embedding vector has the wrong dimension or non-finite values."""


class GenerationFailure(PortfolioChatError):
    """Completion call failed after retries."""


class IngestionError(PortfolioChatError):
    """Document could not be ingested."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


class LedgerWriteError(PortfolioChatError):
    """Usage could not be persisted to the ledger store."""
