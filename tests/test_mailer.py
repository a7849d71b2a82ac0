"""Unit tests for auth/mailer.py -- EmailService and best-effort delivery.

The SES client is a MagicMock handed to the constructor, so nothing here
touches AWS. Development mode is exercised with no client at all.
"""

from unittest.mock import MagicMock

from botocore.exceptions import ClientError, EndpointConnectionError

from auth.mailer import EmailService, InlineTasks, deliver_best_effort
from core.config import Settings


def _settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "jwt_access_secret": "a" * 40,
        "jwt_refresh_secret": "b" * 40,
        "app_url": "https://shop.example.com/",
        "app_name": "Shopfront",
        "email_from": "no-reply@shop.example.com",
        "email_development_mode": True,
    }
    values.update(overrides)
    return Settings(**values)


def _service() -> tuple[EmailService, MagicMock]:
    client = MagicMock()
    client.send_email.return_value = {"MessageId": "msg-1"}
    return EmailService(_settings(email_development_mode=False), ses_client=client), client


class TestDevelopmentMode:
    def test_logs_instead_of_sending(self, caplog):
        service = EmailService(_settings())
        assert service.ses_client is None
        with caplog.at_level("INFO", logger="shopfront.auth.mailer"):
            assert service.send_verification_email("ada@example.com", "tok123") is True
        assert "ada@example.com" in caplog.text
        assert "tok123" not in caplog.text, "tokens must never reach the log"


class TestSesDelivery:
    def test_verification_link_and_subject(self):
        service, client = _service()
        assert service.send_verification_email("ada@example.com", "tok123") is True

        kwargs = client.send_email.call_args.kwargs
        assert kwargs["Destination"] == {"ToAddresses": ["ada@example.com"]}
        assert kwargs["Source"] == "Shopfront <no-reply@shop.example.com>"
        assert kwargs["Message"]["Subject"]["Data"] == "Verify Your Email - Shopfront"
        text = kwargs["Message"]["Body"]["Text"]["Data"]
        assert "https://shop.example.com/auth/verify-email?token=tok123" in text

    def test_reset_link(self):
        service, client = _service()
        service.send_password_reset_email("ada@example.com", "r3set")
        kwargs = client.send_email.call_args.kwargs
        assert kwargs["Message"]["Subject"]["Data"] == "Reset Your Password - Shopfront"
        assert "/auth/reset-password-confirm?token=r3set" in kwargs["Message"]["Body"]["Text"]["Data"]

    def test_welcome_escapes_name(self):
        service, client = _service()
        service.send_welcome_email("ada@example.com", "<b>Ada</b>")
        html_body = client.send_email.call_args.kwargs["Message"]["Body"]["Html"]["Data"]
        assert "<b>Ada</b>" not in html_body
        assert "&lt;b&gt;Ada&lt;/b&gt;" in html_body

    def test_client_error_returns_false(self):
        service, client = _service()
        client.send_email.side_effect = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified."}},
            "SendEmail",
        )
        assert service.send_verification_email("ada@example.com", "tok") is False

    def test_transport_error_returns_false(self):
        service, client = _service()
        client.send_email.side_effect = EndpointConnectionError(endpoint_url="https://email.us-east-1.amazonaws.com")
        assert service.send_welcome_email("ada@example.com", None) is False


class TestDeliverBestEffort:
    def test_swallows_exceptions(self, caplog):
        def boom(email):
            raise RuntimeError("down")

        with caplog.at_level("ERROR", logger="shopfront.auth.mailer"):
            deliver_best_effort(boom, "ada@example.com")
        assert "boom" in caplog.text

    def test_logs_false_result(self, caplog):
        with caplog.at_level("WARNING", logger="shopfront.auth.mailer"):
            deliver_best_effort(lambda email: False, "ada@example.com")
        assert "Email delivery failed" in caplog.text

    def test_inline_tasks_run_immediately(self):
        calls = []
        InlineTasks().add_task(calls.append, 1)
        assert calls == [1]
