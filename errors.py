class ValidationError(ValueError):
    """Input rejected before any write; retrying without a fix will fail again."""


class NotFoundError(ValueError):
    pass


class StoreFailure(RuntimeError):
    """A write against the store failed and was rolled back; safe to retry."""
