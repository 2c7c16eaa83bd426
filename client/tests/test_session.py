"""Tests for clearing local session state."""

from p2pramp.session import clear_session, intercepted_payload_key


class FakeCookies:
    def __init__(self):
        self.cleared = False

    def clear(self):
        self.cleared = True


def test_clear_session_only_touches_payload_namespace():
    storage = {
        intercepted_payload_key("venmo", "0xintent"): "{...}",
        intercepted_payload_key("wise", "0xother"): "{...}",
        "wallet_connected": "true",
    }
    cookies = FakeCookies()

    assert clear_session(storage, cookies) == 2
    assert storage == {"wallet_connected": "true"}
    assert cookies.cleared


def test_clear_session_can_keep_payloads():
    storage = {intercepted_payload_key("venmo", "0xintent"): "{...}"}
    cookies = FakeCookies()

    assert clear_session(storage, cookies, clear_intercepted_payloads=False) == 0
    assert len(storage) == 1
    assert cookies.cleared


def test_payload_key_format():
    assert intercepted_payload_key("revolut", "0x12") == "intercepted_payload_revolut_0x12"
