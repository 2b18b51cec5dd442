"""User-agent classification for the device breakdown rollup."""

import re
from typing import Optional, Tuple

# Ordered; first match wins
DEVICE_PATTERNS = (
    ("Mobile", re.compile(r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.I)),
    ("Tablet", re.compile(r"Tablet|iPad", re.I)),
)
DEFAULT_DEVICE = "Desktop"

BROWSER_PATTERNS = (
    ("Chrome", re.compile(r"Chrome", re.I)),
    ("Firefox", re.compile(r"Firefox", re.I)),
    ("Safari", re.compile(r"Safari", re.I)),
    ("Edge", re.compile(r"Edge|Edg", re.I)),
    ("Internet Explorer", re.compile(r"MSIE|Trident", re.I)),
)
DEFAULT_BROWSER = "Other"


def classify_device(user_agent: Optional[str]) -> str:
    if not user_agent:
        return DEFAULT_DEVICE
    for device, pattern in DEVICE_PATTERNS:
        if pattern.search(user_agent):
            return device
    return DEFAULT_DEVICE


def classify_browser(user_agent: Optional[str]) -> str:
    if not user_agent:
        return DEFAULT_BROWSER
    for browser, pattern in BROWSER_PATTERNS:
        if pattern.search(user_agent):
            return browser
    return DEFAULT_BROWSER


def classify_user_agent(user_agent: Optional[str]) -> Tuple[str, str]:
    """Return (device_type, browser) for a raw User-Agent header."""
    return classify_device(user_agent), classify_browser(user_agent)
