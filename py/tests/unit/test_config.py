from __future__ import annotations

from collections.abc import Iterator

import pytest

from ddbexpr_py.config import (
    DEFAULT_REDACTION_PLACEHOLDER,
    CompilerOptions,
    ConfigError,
    _reset_kms_clients_for_tests,
    create_kms_config,
    get_kms_client,
)
from ddbexpr_py.validation import MaxExpressionLength


@pytest.fixture(autouse=True)
def _fresh_kms_clients() -> Iterator[None]:
    _reset_kms_clients_for_tests()
    yield
    _reset_kms_clients_for_tests()


def test_defaults() -> None:
    options = CompilerOptions()
    assert options.redaction_placeholder == DEFAULT_REDACTION_PLACEHOLDER == "[REDACTED]"
    assert options.max_expression_length == MaxExpressionLength
    assert options.log_expressions is False
    assert CompilerOptions.from_env({}) == options


def test_from_env() -> None:
    options = CompilerOptions.from_env(
        {
            "DDBEXPR_REDACTION_PLACEHOLDER": "***",
            "DDBEXPR_MAX_EXPRESSION_LENGTH": " 2048 ",
            "DDBEXPR_LOG_EXPRESSIONS": "Yes",
        }
    )
    assert options == CompilerOptions(redaction_placeholder="***", max_expression_length=2048, log_expressions=True)


@pytest.mark.parametrize("raw", ["", "0", "false", "no", "off", "OFF"])
def test_falsy_log_flags(raw: str) -> None:
    assert CompilerOptions.from_env({"DDBEXPR_LOG_EXPRESSIONS": raw}).log_expressions is False


@pytest.mark.parametrize(
    ("environ", "message"),
    [
        ({"DDBEXPR_LOG_EXPRESSIONS": "maybe"}, "DDBEXPR_LOG_EXPRESSIONS must be a boolean"),
        ({"DDBEXPR_MAX_EXPRESSION_LENGTH": "lots"}, "DDBEXPR_MAX_EXPRESSION_LENGTH must be an integer"),
        ({"DDBEXPR_MAX_EXPRESSION_LENGTH": "0"}, "must be positive"),
    ],
)
def test_invalid_env(environ: dict[str, str], message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        CompilerOptions.from_env(environ)


def test_empty_placeholder_rejected() -> None:
    with pytest.raises(ConfigError, match="redaction_placeholder"):
        CompilerOptions(redaction_placeholder="")


def test_create_kms_config() -> None:
    cfg = create_kms_config(connect_timeout=2.0, read_timeout=4.0, max_attempts=5)
    assert cfg.connect_timeout == 2.0
    assert cfg.read_timeout == 4.0
    assert cfg.retries == {"max_attempts": 5, "mode": "adaptive"}


def test_get_kms_client_caches_per_region() -> None:
    class FakeSession:
        def __init__(self) -> None:
            self.calls: list[tuple[str, object]] = []

        def client(self, service_name: str, **kwargs: object) -> object:
            self.calls.append((service_name, kwargs.get("region_name")))
            return object()

    sess = FakeSession()
    c1 = get_kms_client(region="us-east-1", session=sess)
    c2 = get_kms_client(region="us-east-1", session=sess)
    c3 = get_kms_client(region="eu-west-1", session=sess)
    assert c1 is c2
    assert c1 is not c3
    assert sess.calls == [("kms", "us-east-1"), ("kms", "eu-west-1")]
