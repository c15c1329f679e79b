from fastapi import HTTPException, status


# Authentication & Authorization Exceptions
class InvalidTokenError(HTTPException):
    def __init__(self, message: str = "Missing or invalid token") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=message,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AccessDeniedError(HTTPException):
    def __init__(self, reason: str) -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=f"Access denied: {reason}")


class ReshareNotPermittedError(AccessDeniedError):
    def __init__(self) -> None:
        super().__init__("re-sharing not permitted")


# Validation / Request Exceptions
class InvalidDataError(HTTPException):
    def __init__(self, message: str = "Invalid request data") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


class InvalidObjectTypeError(InvalidDataError):
    def __init__(self) -> None:
        super().__init__("Invalid object type")


class MissingObjectIdError(InvalidDataError):
    def __init__(self, message: str = "Object ID required") -> None:
        super().__init__(message)


# Resource Exceptions
class GrantNotFoundError(HTTPException):
    def __init__(self) -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail="Access grant not found")


class OrganizationNotFoundError(HTTPException):
    def __init__(self) -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")


class GrantConflictError(HTTPException):
    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail="An active access grant already exists for this organization",
        )


# Internal Exceptions
class AccessCheckFailedError(HTTPException):
    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Access control check failed",
        )


class LookupTimeoutError(AccessCheckFailedError):
    pass


class ObjectNotFoundError(HTTPException):
    def __init__(self) -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail="Object not found")
