import pytest

from asyncrequest import errors


def test_async_request_error_base():
    """Tests that AsyncRequestError can be raised and caught."""
    with pytest.raises(errors.AsyncRequestError, match="Base error"):
        raise errors.AsyncRequestError("Base error")


@pytest.mark.parametrize(
    "error_class, default_message, base_class",
    [
        (errors.RequestSuspendedError, "Request suspended", errors.RequestLifecycleError),
        (errors.RequestCancelledError, "Request cancelled", errors.RequestLifecycleError),
        (errors.ResponseNoDataError, "Response carries no payload", errors.AsyncRequestError),
        (errors.TransportCancelledError, "Transport task cancelled", errors.TransportError),
        (
            errors.InvalidResumeDataError,
            "Resume data could not be decoded",
            errors.AsyncRequestError,
        ),
    ],
)
def test_default_messages(error_class, default_message, base_class):
    """Tests errors that carry a default message."""
    with pytest.raises(error_class, match=default_message) as exc_info:
        raise error_class()
    assert isinstance(exc_info.value, base_class)
    assert isinstance(exc_info.value, errors.AsyncRequestError)


def test_lifecycle_errors_share_base():
    with pytest.raises(errors.RequestLifecycleError):
        raise errors.RequestSuspendedError()
    with pytest.raises(errors.RequestLifecycleError):
        raise errors.RequestCancelledError("cancelled by user")


def test_string_encode_error():
    err = errors.StringEncodeError("héllo", "ascii")

    assert isinstance(err, errors.RequestEncodingError)
    assert err.text == "héllo"
    assert err.encoding == "ascii"
    assert str(err) == "Failed to encode text body using 'ascii'"


def test_json_encode_error():
    cause = TypeError("Type is not JSON serializable: set")
    err = errors.JSONEncodeError({1, 2}, cause)

    assert isinstance(err, errors.RequestEncodingError)
    assert err.value == {1, 2}
    assert err.original_exception is cause
    assert str(err) == "Failed to encode set as JSON: Type is not JSON serializable: set"


def test_json_encode_error_without_cause():
    assert str(errors.JSONEncodeError(object())) == "Failed to encode object as JSON"


def test_form_encode_error():
    cause = TypeError("Invalid type for value")
    err = errors.FormEncodeError(cause)

    assert isinstance(err, errors.RequestEncodingError)
    assert err.original_exception is cause
    assert str(err) == "Failed to encode form body: Invalid type for value"
    assert str(errors.FormEncodeError()) == "Failed to encode form body"


def test_transport_error_details():
    original = ConnectionResetError("reset by peer")
    err = errors.TransportError("Read failed", original_exception=original, status_code=502)

    assert err.original_exception is original
    assert err.status_code == 502
    assert str(err) == "Read failed (Status Code: 502)"


def test_transport_error_without_status():
    err = errors.TransportError("Connect failed")

    assert err.status_code is None
    assert err.original_exception is None
    assert str(err) == "Connect failed"
