"""Rate window specific exceptions."""


class RateWindowError(Exception):
    """Base exception for rate window errors."""


class BackendError(RateWindowError):
    """Exception raised when a counter store operation fails.

    The store was reachable (or is local) but could not complete the
    operation, e.g. a serialization fault, a script error or the in-memory
    store running out of capacity.
    """

    def __init__(self, message: str, store: str | None = None, key: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            store: Optional engine name of the store that failed
            key: Optional counter key involved in the failed operation
        """
        self.store = store
        self.key = key
        super().__init__(message)


class BackendUnavailableError(BackendError):
    """Exception raised when a counter store cannot be reached.

    Covers connection failures and timeouts. Expected to be transient under
    network partitions.
    """


class ConfigValidationError(RateWindowError):
    """Exception raised when configuration validation fails."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        expected: str | None = None,
        received: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            field: Field name that failed validation
            expected: Expected value or type
            received: Received value or type
        """
        self.field = field
        self.expected = expected
        self.received = received

        full_message = message
        if field and expected and received:
            full_message = f"{message} (field='{field}', expected={expected}, received={received})"

        super().__init__(full_message)


class StoreNotFoundError(RateWindowError):
    """Exception raised when a store is not found."""

    def __init__(self, store_id: str) -> None:
        """Initialize the exception.

        Args:
            store_id: ID of the store that was not found
        """
        self.store_id = store_id
        super().__init__(
            f"Store '{store_id}' not found. Configure it first using configure_store()."
        )


class LimiterNotFoundError(RateWindowError):
    """Exception raised when a limiter is not found."""

    def __init__(self, limiter_id: str) -> None:
        """Initialize the exception.

        Args:
            limiter_id: ID of the limiter that was not found
        """
        self.limiter_id = limiter_id
        super().__init__(
            f"Limiter '{limiter_id}' not found. "
            f"Configure it first using configure_limiter() or load_config()."
        )
