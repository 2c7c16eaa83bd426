"""Clearing client-local session state."""

import logging
from typing import MutableMapping, Protocol

logger = logging.getLogger(__name__)

INTERCEPTED_PAYLOAD_PREFIX = "intercepted_payload_"


class CookieJar(Protocol):
    def clear(self) -> None: ...


def intercepted_payload_key(platform: str, intent_hash: str) -> str:
    return f"{INTERCEPTED_PAYLOAD_PREFIX}{platform}_{intent_hash}"


def clear_session(
    storage: MutableMapping[str, str],
    cookies: CookieJar,
    clear_intercepted_payloads: bool = True,
) -> int:
    """Drop intercepted payment payloads and all cookies.

    Keys outside the payload namespace are left alone. Returns the number of
    storage keys removed.
    """
    removed = 0
    if clear_intercepted_payloads:
        try:
            keys = [key for key in storage if key.startswith(INTERCEPTED_PAYLOAD_PREFIX)]
            for key in keys:
                del storage[key]
                removed += 1
        except (KeyError, OSError) as e:
            logger.error(f"Failed to clear intercepted payloads: {e}")

    try:
        cookies.clear()
    except OSError as e:
        logger.error(f"Failed to clear cookies: {e}")

    logger.info(f"Session cleared ({removed} payload keys)")
    return removed
