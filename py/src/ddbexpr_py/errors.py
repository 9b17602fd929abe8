from __future__ import annotations


class DdbExprError(Exception):
    pass


class ValidationError(DdbExprError):
    pass


class TranslationError(ValidationError):
    def __init__(self, message: str, *, property_name: str | None = None, fragment: str | None = None) -> None:
        detail = message
        if property_name is not None:
            detail += f" (property={property_name})"
        if fragment is not None:
            detail += f" (fragment={fragment})"
        super().__init__(detail)
        self.reason = message
        self.property_name = property_name
        self.fragment = fragment


class UnsupportedExpressionShape(TranslationError):
    pass


class KeyConditionViolation(TranslationError):
    pass


class TypeMismatch(TranslationError):
    pass


class InvalidDiscriminatorPattern(ValidationError):
    def __init__(self, *, pattern: str, reason: str) -> None:
        super().__init__(f"invalid discriminator pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class MissingEncryptionProvider(DdbExprError):
    def __init__(self, *, property_name: str) -> None:
        super().__init__(f"property requires encryption but no encryptor is configured: {property_name}")
        self.property_name = property_name


class DiscriminatorMismatchError(DdbExprError):
    def __init__(self, *, attribute: str, expected: str, actual: str | None) -> None:
        super().__init__(f"discriminator mismatch on {attribute}: expected {expected}, got {actual!r}")
        self.attribute = attribute
        self.expected = expected
        self.actual = actual


class EncryptionError(DdbExprError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
