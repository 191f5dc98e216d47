from __future__ import annotations


class DomainError(ValueError):
    """Rejected write with a structured reason.

    ``field`` names the attribute involved (or ``None`` when the rule spans
    the whole record) and ``rule`` is a short machine-readable identifier.
    """

    status_code = 400

    def __init__(self, message: str, field: str | None = None, rule: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.rule = rule

    def to_dict(self) -> dict[str, str | None]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "field": self.field,
            "rule": self.rule,
        }


class ValidationError(DomainError):
    pass


class InvalidTransition(DomainError):
    status_code = 409


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    status_code = 409
