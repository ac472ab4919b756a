class FulfillmentError(Exception):
    """Base exception for Workshop Fulfillment errors."""

    default_message = "An error occurred in the Workshop Fulfillment System"

    def __init__(self, message=None, code=None, details=None):
        """Initialize the exception.

        Args:
            message: Error message
            code: Error code
            details: Additional error details
        """
        self.message = message or self.default_message
        self.code = code
        self.details = details
        super().__init__(self.message)

    def __str__(self):
        """String representation of the error."""
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self):
        """Convert the exception to a dictionary."""
        error_dict = {
            'error': self.__class__.__name__,
            'message': self.message,
        }

        if self.code:
            error_dict['code'] = self.code

        if self.details:
            error_dict['details'] = self.details

        return error_dict


# Configuration errors: raised, abort the operation

class ConfigError(FulfillmentError):
    """Exception raised for configuration errors."""

    default_message = "Configuration error"


class UnknownStatus(ConfigError):
    """Exception raised when a status code is outside its closed set."""

    default_message = "Unknown status code"


# Infrastructure errors: raised

class DatabaseError(FulfillmentError):
    """Exception raised for database-related errors."""

    default_message = "Database error"


class ValidationError(FulfillmentError):
    """Exception raised for data validation errors."""

    default_message = "Validation error"


class NotFoundError(FulfillmentError):
    """Exception raised when a requested resource is not found."""

    default_message = "Resource not found"


class ConcurrentModificationError(FulfillmentError):
    """Exception raised when a row changed underneath the current transaction."""

    default_message = "Record was modified concurrently"


class BatchProcessError(FulfillmentError):
    """Exception raised for batch process errors."""

    default_message = "Batch process error"


# Recoverable domain conditions: returned inside a Result

class InsufficientStock(FulfillmentError):
    """Not enough unreserved stock to satisfy a reservation."""

    default_message = "Insufficient stock available"


class NotReserved(FulfillmentError):
    """Nothing is reserved that could be released."""

    default_message = "No reservation to release"


class OverrideRequired(FulfillmentError):
    """Scheduling against unready parts needs an override reason."""

    default_message = "Override reason required"


class DuplicateBackOrder(FulfillmentError):
    """A parts line already has an open back-order."""

    default_message = "Parts line already has an open back-order"


class InvalidReceiptQuantity(FulfillmentError):
    """Receipt quantity is not positive or over-receives the back-order."""

    default_message = "Invalid receipt quantity"


class InvalidTransition(FulfillmentError):
    """Lifecycle operation is not valid from the current state."""

    default_message = "Invalid status transition"


# External integration errors: returned, state left unchanged

class SupplierError(FulfillmentError):
    """Exception raised when the supplier ordering API fails."""

    default_message = "Supplier API error"


class SupplierTimeoutError(SupplierError):
    """Exception raised when the supplier ordering API times out."""

    default_message = "Supplier API timed out"
