class ConfigurationError(ValueError):
    """Raised when a DecodingConfig violates one of its constraints."""


class OracleFailure(RuntimeError):
    """Raised when the scoring oracle fails or returns a malformed log-probability vector.

    Attributes:
        source_indices: Batch rows affected by the failure.
    """

    def __init__(self, message: str, source_indices: list[int] | None = None) -> None:
        super().__init__(message)
        self.source_indices = source_indices or []
