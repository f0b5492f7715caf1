import errors
from errors import (
    AppError,
    CategoryNotFound,
    ExternalServiceError,
    RemainingAmountExceeded,
    error_response,
)


def test_app_errors_keep_their_message_and_status() -> None:
    assert error_response(CategoryNotFound("Category not found")) == ("Category not found", 404)
    assert error_response(RemainingAmountExceeded("too much")) == ("too much", 400)
    assert error_response(ExternalServiceError("AI is down")) == ("AI is down", 502)


def test_unexpected_errors_become_a_generic_500() -> None:
    assert error_response(RuntimeError("db password is hunter2")) == (
        "Internal Server Error",
        500,
    )


def test_every_raised_error_class_maps_to_a_client_or_gateway_status() -> None:
    raised = [
        cls
        for cls in vars(errors).values()
        if isinstance(cls, type) and issubclass(cls, AppError) and cls is not AppError
    ]
    assert raised
    assert all(cls.status != 500 for cls in raised)
