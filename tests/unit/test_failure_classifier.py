import pytest

from complaint_agent.agent.failures import FailureKind, classify_failure, error_status
from complaint_agent.errors import ProviderError


class _StatusError(Exception):
    def __init__(self, message: str, status: object) -> None:
        super().__init__(message)
        self.status = status


class _Response:
    status_code = 503


class _ResponseError(Exception):
    response = _Response()


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (ProviderError("slow down", status_code=429), FailureKind.RATE_LIMITED),
        (RuntimeError("Resource Exhausted: quota exceeded for project"), FailureKind.RATE_LIMITED),
        (ProviderError("upstream failed", status_code=503), FailureKind.SERVER_ERROR),
        (ProviderError("gemini-x is not a valid model ID", status_code=400), FailureKind.BAD_MODEL),
        (RuntimeError("Connection reset by peer"), FailureKind.NETWORK_ERROR),
        (RuntimeError("Request timed out"), FailureKind.NETWORK_ERROR),
        (ProviderError("nope", status_code=401), FailureKind.AUTH_ERROR),
        (ProviderError("Gemini api key not configured"), FailureKind.AUTH_ERROR),
        (RuntimeError("Response blocked by SAFETY settings"), FailureKind.CONTENT_FILTERED),
        (RuntimeError("The model is overloaded"), FailureKind.OVERLOADED),
        (ValueError("unexpected token in output"), FailureKind.UNKNOWN),
    ],
)
def test_classification_table(error: Exception, kind: FailureKind) -> None:
    result = classify_failure(error)

    assert result.kind is kind
    assert result.should_escalate is (kind is not FailureKind.UNKNOWN)


def test_first_matching_rule_wins() -> None:
    # 429 in the message beats the 500 status.
    result = classify_failure(ProviderError("429 from upstream", status_code=500))
    assert result.kind is FailureKind.RATE_LIMITED


def test_bad_model_requires_400_status() -> None:
    result = classify_failure(ProviderError("model not found", status_code=404))
    assert result.kind is FailureKind.UNKNOWN


def test_status_read_from_string_and_response() -> None:
    assert error_status(_StatusError("x", "429")) == 429
    assert error_status(_StatusError("x", "RESOURCE_EXHAUSTED")) is None
    assert error_status(_ResponseError("x")) == 503


def test_classification_is_deterministic() -> None:
    error = RuntimeError("Service BUSY, try later")
    assert classify_failure(error) == classify_failure(error)
    assert classify_failure(error).kind is FailureKind.OVERLOADED
