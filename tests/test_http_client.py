import unittest
from unittest import mock

import requests

from cookbook.config import WebscraperConfig
from cookbook.http_client import BROWSER_HEADERS, HttpClient


def fake_response(text="<html></html>", encoding="utf-8", status=200, content_type="text/html"):
    response = mock.Mock()
    response.text = text
    response.content = text.encode("utf-8")
    response.encoding = encoding
    response.apparent_encoding = "utf-8"
    response.headers = {"Content-Type": content_type}
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return response


class HttpClientTests(unittest.TestCase):
    def test_session_sends_browser_headers(self) -> None:
        client = HttpClient(headers={"Referer": "https://recipes.example"})

        headers = client._session.headers
        self.assertEqual(BROWSER_HEADERS["User-Agent"], headers["User-Agent"])
        self.assertEqual("https://recipes.example", headers["Referer"])

    def test_get_html_uses_configured_timeout_and_sniffs_encoding(self) -> None:
        client = HttpClient.from_config(WebscraperConfig(request_timeout=7))
        response = fake_response(encoding="ISO-8859-1")

        with mock.patch.object(client._session, "get", return_value=response) as get:
            self.assertEqual("<html></html>", client.get_html("https://recipes.example/soup"))

        get.assert_called_once_with("https://recipes.example/soup", timeout=7)
        self.assertEqual("utf-8", response.encoding)

    def test_http_errors_propagate(self) -> None:
        client = HttpClient()

        with mock.patch.object(client._session, "get", return_value=fake_response(status=404)):
            with self.assertRaises(requests.HTTPError):
                client.get_html("https://recipes.example/missing")

    def test_non_html_response_is_logged(self) -> None:
        client = HttpClient()

        with mock.patch.object(client._session, "get", return_value=fake_response(content_type="application/json")):
            with self.assertLogs("cookbook.http_client", level="WARNING"):
                client.get_html("https://recipes.example/api")
