"""
Best-effort fullscreen.

Display backends expose fullscreen under different names, and some elements
cannot go fullscreen at all until they have rendered. ``request_fullscreen``
probes a ranked list of equivalent methods on the target element, falls back to
its container, and never raises: failing to go fullscreen must not stop the
stimulus from playing.
"""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Tried in order; the first one present on the element is used
FULLSCREEN_METHODS = (
    "request_fullscreen",
    "webkit_request_fullscreen",
    "enter_fullscreen",
)


class FullscreenError(RuntimeError):
    """Raised by an element that cannot enter fullscreen right now."""


def _request_on(element: Any) -> None:
    for name in FULLSCREEN_METHODS:
        method = getattr(element, name, None)
        if callable(method):
            method()
            return
    raise FullscreenError(f"No fullscreen API available on {type(element).__name__}")


def request_fullscreen(element: Optional[Any], container: Optional[Any] = None) -> bool:
    """
    Try to put ``element`` (or, failing that, ``container``) into fullscreen.

    Returns:
        True if one of them accepted the request, False otherwise
    """
    target = element if element is not None else container
    if target is None:
        return False

    try:
        _request_on(target)
        return True
    except Exception as e:
        logger.info("Primary fullscreen failed, retrying on container: %s", e)

    if container is not None and container is not target:
        try:
            _request_on(container)
            return True
        except Exception as e:
            logger.info("Container fullscreen failed: %s", e)
    return False
