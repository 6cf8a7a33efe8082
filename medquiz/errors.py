"""
Error taxonomy shared by services and the HTTP layer.
Each class carries the HTTP status the API answers with.
"""


class MedQuizError(Exception):
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MedQuizError):
    status = 400


class AuthenticationError(MedQuizError):
    status = 401


class PaymentError(MedQuizError):
    status = 402


class AccessDenied(MedQuizError):
    status = 403


class NotFound(MedQuizError):
    status = 404


class BackendError(MedQuizError):
    """Persistence layer or gateway unreachable. Retry is left to the caller."""
    status = 502


class NoQuestionsAvailable(NotFound):
    def __init__(self, message: str = "No questions available for the selected topics"):
        super().__init__(message)


class AnswerRejected(ValidationError):
    pass
