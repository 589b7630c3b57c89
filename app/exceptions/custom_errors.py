class AllocationInputError(ValueError):
    """Raised when a required input collection is missing from an allocation call."""

    pass


class RuleNotFoundError(Exception):
    """Raised when a business rule id is not in the rule store."""

    pass


class AllocationRunNotFoundError(Exception):
    """Raised when a stored allocation run id is unknown."""

    pass


class BlockingValidationError(Exception):
    """Raised when allocation was asked to block on critical validation errors and some exist."""

    def __init__(self, errors):
        super().__init__(f"{len(errors)} critical validation errors block allocation")
        self.errors = errors


class TextGenerationError(Exception):
    """Raised when the remote text-generation service fails or returns unusable output."""

    pass


# Mapping of custom exceptions to HTTP status codes
CUSTOM_ERRORS = {
    AllocationInputError: 400,
    RuleNotFoundError: 404,
    AllocationRunNotFoundError: 404,
    BlockingValidationError: 422,
    TextGenerationError: 502,
}
