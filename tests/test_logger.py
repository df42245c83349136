import logging

from personal_cfo.logger import LOG_FILENAME, TokenRedactingFilter, get_logging_config, redact


def test_redact_hides_bearer_and_cookie_tokens() -> None:
    assert redact("Authorization: Bearer eyJhbGciOi.abc.def") == "Authorization: Bearer [REDACTED]"
    assert redact("cookie access_token=s3cret; Path=/") == "cookie access_token=[REDACTED]; Path=/"
    assert redact('{"access_token": "tok", "token_type": "bearer"}') == (
        '{"access_token": "[REDACTED]", "token_type": "bearer"}'
    )
    assert redact("GET /dashboard 200") == "GET /dashboard 200"


def test_filter_rewrites_formatted_message() -> None:
    record = logging.LogRecord("t", logging.INFO, __file__, 1, "sent %s", ("Bearer abc",), None)

    assert TokenRedactingFilter().filter(record)
    assert record.getMessage() == "sent Bearer [REDACTED]"


def test_logging_config_adds_file_handler_and_falls_back_on_bad_level(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_LEVEL", "chatty")

    config = get_logging_config()

    assert config["handlers"]["file"]["filename"] == str(tmp_path / LOG_FILENAME)
    assert config["handlers"]["file"]["formatter"] == "plain"
    assert config["loggers"][""]["level"] == "INFO"
    assert config["loggers"]["httpx"]["level"] == "WARNING"
