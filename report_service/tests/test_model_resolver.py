"""Tests for Gemini model availability resolution."""
import unittest
from unittest.mock import MagicMock, patch

from google.genai import errors as genai_errors

from report_service.config import Settings
from report_service.errors import ModelErrorKind, ModelUnavailableError
from report_service.model_resolver import ModelResolver, create_client

from .fakes import FakeClient


def api_error(code, message="error"):
    error = MagicMock(spec=genai_errors.APIError)
    error.code = code
    error.__str__.return_value = message
    return error


class _RaisingError(Exception):
    pass


class TestResolve(unittest.TestCase):

    def test_first_k_fail_then_winner_cached(self):
        client = FakeClient({
            "m1": RuntimeError("404 model not found"),
            "m2": RuntimeError("403 permission denied"),
            "m3": "OK",
            "m4": "OK",
        })
        resolver = ModelResolver(client, ["m1", "m2", "m3", "m4"])

        self.assertEqual(resolver.resolve(), "m3")
        self.assertEqual(resolver.cached_model, "m3")
        self.assertEqual(client.models.models_called(), ["m1", "m2", "m3"])

        # Cached: no further probes
        self.assertEqual(resolver.resolve(), "m3")
        self.assertEqual(len(client.models.calls), 3)

    def test_subsequent_invocations_start_at_winner(self):
        client = FakeClient({"m1": RuntimeError("404 not found"), "m2": "OK"})
        resolver = ModelResolver(client, ["m1", "m2"])
        resolver.resolve()
        client.models.calls.clear()

        reply = resolver.invoke_with_fallback("analyze this")
        self.assertEqual(reply.model, "m2")
        self.assertEqual(client.models.models_called(), ["m2"])

    def test_exhaustion_carries_last_error_kind(self):
        client = FakeClient({
            "m1": RuntimeError("404 not found"),
            "m2": RuntimeError("429 Resource has been exhausted (quota)"),
        })
        resolver = ModelResolver(client, ["m1", "m2"])
        with self.assertRaises(ModelUnavailableError) as ctx:
            resolver.resolve()
        self.assertEqual(ctx.exception.kind, ModelErrorKind.QUOTA)
        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(ctx.exception.attempted, ["m1", "m2"])
        self.assertIsNone(resolver.cached_model)

    def test_empty_reply_counts_as_failure(self):
        client = FakeClient({"m1": "   ", "m2": "OK"})
        resolver = ModelResolver(client, ["m1", "m2"])
        self.assertEqual(resolver.resolve(), "m2")

    def test_reprobe_clears_cache(self):
        behaviors = {"m1": "OK", "m2": "OK"}
        client = FakeClient(behaviors)
        resolver = ModelResolver(client, ["m1", "m2"])
        self.assertEqual(resolver.resolve(), "m1")

        behaviors_now = client.models.behaviors
        behaviors_now["m1"] = RuntimeError("404 model retired")
        self.assertEqual(resolver.reprobe(), "m2")
        self.assertEqual(resolver.cached_model, "m2")

    def test_requires_candidates(self):
        with self.assertRaises(ValueError):
            ModelResolver(FakeClient(), [])


class TestInvokeWithFallback(unittest.TestCase):

    def test_payload_failure_falls_through_to_next_candidate(self):
        # m1 passes the probe but rejects the real payload
        def m1(contents):
            if contents == "big payload":
                return RuntimeError("400 invalid argument: request too large")
            return "OK"

        client = FakeClient({"m1": m1, "m2": "result"})
        resolver = ModelResolver(client, ["m1", "m2"])
        self.assertEqual(resolver.resolve(), "m1")

        reply = resolver.invoke_with_fallback("big payload")
        self.assertEqual(reply.model, "m2")
        self.assertEqual(reply.text, "result")
        self.assertEqual(resolver.cached_model, "m2")

    def test_failing_candidate_not_retried_within_call(self):
        client = FakeClient({"m1": RuntimeError("500 internal"), "m2": RuntimeError("500 internal")})
        resolver = ModelResolver(client, ["m1", "m2"])
        with self.assertRaises(ModelUnavailableError) as ctx:
            resolver.invoke_with_fallback("x")
        self.assertEqual(client.models.models_called(), ["m1", "m2"])
        self.assertEqual(ctx.exception.kind, ModelErrorKind.UNKNOWN)

    def test_cached_model_tried_first_then_rest_in_order(self):
        client = FakeClient({"m1": "OK", "m2": RuntimeError("boom"), "m3": "OK"})
        resolver = ModelResolver(client, ["m1", "m2", "m3"])
        resolver._cached_model = "m2"

        reply = resolver.invoke_with_fallback("x")
        self.assertEqual(client.models.models_called(), ["m2", "m1"])
        self.assertEqual(reply.model, "m1")

    def test_timeout_advances_to_next(self):
        client = FakeClient({"m1": TimeoutError("read timed out"), "m2": "OK"})
        resolver = ModelResolver(client, ["m1", "m2"])
        self.assertEqual(resolver.invoke_with_fallback("x").model, "m2")


class TestClassifyError(unittest.TestCase):

    def test_api_error_codes(self):
        cases = {
            429: ModelErrorKind.QUOTA,
            401: ModelErrorKind.PERMISSION,
            403: ModelErrorKind.PERMISSION,
            404: ModelErrorKind.NOT_FOUND,
            400: ModelErrorKind.MALFORMED_REQUEST,
        }
        for code, kind in cases.items():
            with self.subTest(code=code):
                self.assertEqual(ModelResolver.classify_error(api_error(code)), kind)

    def test_message_fallbacks(self):
        cases = {
            "Quota exceeded for project": ModelErrorKind.QUOTA,
            "Permission denied on resource": ModelErrorKind.PERMISSION,
            "models/gemini-x is not found": ModelErrorKind.NOT_FOUND,
            "Invalid JSON payload": ModelErrorKind.MALFORMED_REQUEST,
            "connection reset": ModelErrorKind.UNKNOWN,
        }
        for message, kind in cases.items():
            with self.subTest(message=message):
                self.assertEqual(ModelResolver.classify_error(_RaisingError(message)), kind)

    def test_timeout(self):
        self.assertEqual(ModelResolver.classify_error(TimeoutError()), ModelErrorKind.TIMEOUT)

    def test_user_messages_hide_details(self):
        error = ModelUnavailableError("All failed. Last error: key=abc123", kind=ModelErrorKind.PERMISSION)
        self.assertNotIn("abc123", error.user_message)
        self.assertEqual(error.status_code, 502)


class TestCreateClient(unittest.TestCase):

    @patch("report_service.model_resolver.genai.Client")
    def test_timeout_in_milliseconds(self, mock_client):
        create_client(Settings(api_key="test-key", timeout_seconds=12.5))
        _, kwargs = mock_client.call_args
        self.assertEqual(kwargs["api_key"], "test-key")
        self.assertEqual(kwargs["http_options"].timeout, 12500)


if __name__ == "__main__":
    unittest.main()
