# Presentation helpers layered over the aggregated listener list.

from typing import Iterable

from .config import Settings
from .models import Listener

LOCALHOST_ADDRESSES = ("127.0.0.1", "::1")
WILDCARD_ADDRESSES = ("*", "0.0.0.0", "::")


def is_system_listener(listener: Listener, settings: Settings) -> bool:
    if listener.uid is not None and listener.uid < settings.system_uid_threshold:
        return True
    if listener.user and settings.current_user and listener.user != settings.current_user:
        return True
    path = listener.executable_path or ""
    return any(path.startswith(prefix) for prefix in settings.system_path_prefixes)


def filter_listeners(
    listeners: Iterable[Listener],
    settings: Settings,
    hide_system: bool = False,
    hide_idle: bool = False,
) -> list[Listener]:
    visible = []
    for listener in listeners:
        if hide_system and is_system_listener(listener, settings):
            continue
        if hide_idle and not listener.cpu_percent:
            continue
        visible.append(listener)
    return visible


def friendly_address(address: str) -> str:
    if address in LOCALHOST_ADDRESSES:
        return "localhost"
    if address in WILDCARD_ADDRESSES:
        return "all network interfaces"
    return address


def format_memory(num_bytes: int | None) -> str:
    if not num_bytes or num_bytes <= 0:
        return "-"
    mb = num_bytes / (1024 * 1024)
    if mb < 1024:
        return f"{mb:.1f} MB"
    return f"{mb / 1024:.2f} GB"
