import unittest
from unittest.mock import MagicMock, patch

import requests

from sheet_engine.cloud import RemoteSync


def _response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


class RemoteSyncTests(unittest.TestCase):
    def setUp(self):
        self.remote = RemoteSync("https://sync.example.test/", "tok", 5)

    def test_not_configured(self):
        remote = RemoteSync("")
        self.assertFalse(remote.is_configured())
        self.assertFalse(remote.save({"id": "abc"})["ok"])
        self.assertFalse(remote.load("abc")["ok"])

    def test_save_puts_payload(self):
        record = {"id": "abc", "name": "Vex"}
        with patch("sheet_engine.cloud.requests.put", return_value=_response()) as put:
            res = self.remote.save(record)
        self.assertTrue(res["ok"])
        put.assert_called_once_with(
            "https://sync.example.test/characters/abc",
            json={"payload": record},
            headers={"Accept": "application/json", "Authorization": "Bearer tok"},
            timeout=5,
        )

    def test_save_without_id(self):
        with patch("sheet_engine.cloud.requests.put") as put:
            res = self.remote.save({"id": ""})
        self.assertFalse(res["ok"])
        put.assert_not_called()

    def test_save_transport_error_is_reported(self):
        with patch("sheet_engine.cloud.requests.put", side_effect=requests.ConnectionError("down")):
            res = self.remote.save({"id": "abc"})
        self.assertFalse(res["ok"])
        self.assertIn("down", res["message"])

    def test_load_returns_payload(self):
        body = {"payload": {"id": "abc", "name": "Vex"}}
        with patch("sheet_engine.cloud.requests.get", return_value=_response(body=body)) as get:
            res = self.remote.load("abc")
        self.assertTrue(res["ok"])
        self.assertEqual({"id": "abc", "name": "Vex"}, res["payload"])
        self.assertEqual("https://sync.example.test/characters/abc", get.call_args[0][0])

    def test_load_http_error(self):
        with patch("sheet_engine.cloud.requests.get", return_value=_response(status=404)):
            res = self.remote.load("abc")
        self.assertFalse(res["ok"])

    def test_load_without_payload(self):
        with patch("sheet_engine.cloud.requests.get", return_value=_response(body={"data": {}})):
            res = self.remote.load("abc")
        self.assertFalse(res["ok"])
        self.assertEqual("Cloud returned no character.", res["message"])

    def test_load_invalid_json(self):
        resp = _response()
        resp.json.side_effect = ValueError("bad json")
        with patch("sheet_engine.cloud.requests.get", return_value=resp):
            res = self.remote.load("abc")
        self.assertFalse(res["ok"])
        self.assertEqual("Cloud returned invalid JSON.", res["message"])


if __name__ == "__main__":
    unittest.main()
