"""Tests for image_edit_proxy/error_handling.py: upstream message extraction."""

import json

import pytest

import image_edit_proxy.error_handling
import image_edit_proxy.models

DEFAULT_MESSAGE = image_edit_proxy.error_handling.DEFAULT_UPSTREAM_ERROR_MESSAGE


class TestExtractUpstreamErrorMessage:

    def test_prefers_error_field(self):
        body = json.dumps({"error": "Invalid image", "message": "ignored"})
        assert image_edit_proxy.error_handling.extract_upstream_error_message(body) == "Invalid image"

    def test_falls_back_to_message_field(self):
        body = json.dumps({"message": "Rate limit reached"})
        assert image_edit_proxy.error_handling.extract_upstream_error_message(body) == "Rate limit reached"

    @pytest.mark.parametrize(
        "body",
        [
            "",
            "<html>502 Bad Gateway</html>",
            "[1, 2, 3]",
            '"just a string"',
            "null",
            json.dumps({"detail": "no recognised field"}),
            json.dumps({"error": 42}),
            json.dumps({"error": "   "}),
            "[" * 100_000,
        ],
    )
    def test_unusable_bodies_fall_back_to_default(self, body):
        assert image_edit_proxy.error_handling.extract_upstream_error_message(body) == DEFAULT_MESSAGE

    def test_custom_default(self):
        assert image_edit_proxy.error_handling.extract_upstream_error_message("oops", "fallback") == "fallback"


class TestBuildErrorResponse:

    def test_body_and_status(self):
        response = image_edit_proxy.error_handling.build_error_response(
            418,
            image_edit_proxy.models.ErrorKind.AI_SERVER_ERROR,
            "I'm a teapot",
            "The AI server returned an error (Status: 418)",
            upstream_status=418,
        )

        assert response.status_code == 418
        assert json.loads(response.body) == {
            "error": "I'm a teapot",
            "message": "The AI server returned an error (Status: 418)",
            "code": "AI_SERVER_ERROR",
            "status": 418,
        }
