# Port Collector - Enumerates listening TCP/UDP sockets from lsof field output.

from typing import Any

from .base import Collector, CommandResult
from .config import Settings
from .models import Listener, RawSocketRecord

CONNECTED_MARKER = "->"


class PortCollector(Collector):
    name = "ports"
    description = "Listening TCP/UDP socket enumeration"

    def __init__(self, settings: Settings, protocol: str):
        super().__init__(settings)
        if protocol not in ("tcp", "udp"):
            raise ValueError(f"Unsupported protocol: {protocol}")
        self.protocol = protocol
        self.name = f"ports/{protocol}"

    @property
    def timeout(self) -> float:
        return self.settings.timeouts.socket_listing

    def get_command(self) -> list[str]:
        if self.protocol == "tcp":
            return [self.settings.lsof_path, "-nP", "-iTCP", "-sTCP:LISTEN", "-FpcPnTuL"]
        return [self.settings.lsof_path, "-nP", "-iUDP", "-FpcPnTuL"]

    def empty_value(self) -> list[RawSocketRecord]:
        return []

    def accepts(self, result: CommandResult) -> bool:
        # lsof exits 1 when no open file matched the selection
        return result.returncode == 0 or (result.returncode == 1 and not result.stdout.strip())

    def parse_output(self, raw_output: str) -> list[RawSocketRecord]:
        return parse_tagged_records(raw_output, self.protocol)


def _flush(current: dict[str, Any] | None, records: list[RawSocketRecord]) -> None:
    if current is None:
        return
    if current.get("pid") is None and not current.get("command_name"):
        return
    tokens = tuple(current.pop("names"))
    records.append(RawSocketRecord(address_port_tokens=tokens, **current))


def parse_tagged_records(raw_output: str, protocol: str) -> list[RawSocketRecord]:
    """Group lsof ``-F`` output into one record per process.

    Each line carries one field; its first character is the tag. A ``p``
    line starts a new process, ``n`` lines accumulate in order.
    """
    records: list[RawSocketRecord] = []
    current: dict[str, Any] | None = None

    for line in raw_output.splitlines():
        if not line:
            continue
        tag, value = line[0], line[1:]

        if tag == "p":
            _flush(current, records)
            current = {"protocol": protocol, "pid": None, "names": []}
            if value.isascii() and value.isdigit():
                current["pid"] = int(value)
            continue

        if current is None:
            continue

        if tag == "c":
            current["command_name"] = value
        elif tag == "u":
            if value.isascii() and value.isdigit():
                current["uid"] = int(value)
        elif tag == "L":
            current["user"] = value
        elif tag == "n":
            current["names"].append(value)

    _flush(current, records)
    return records


def decode_address_port(token: str) -> tuple[str, int] | None:
    if CONNECTED_MARKER in token:
        return None

    raw = token.split(" ", 1)[0]
    last_colon = raw.rfind(":")
    if last_colon <= 0:
        return None

    address, port_text = raw[:last_colon], raw[last_colon + 1:]
    if not port_text.isascii() or not port_text.isdigit():
        return None
    port = int(port_text)
    if port > 65535:
        return None

    if address.startswith("[") and address.endswith("]") and len(address) > 2:
        address = address[1:-1]
    return address, port


def base_listeners(records: list[RawSocketRecord]) -> list[Listener]:
    listeners = []
    for record in records:
        if record.pid is None or record.pid <= 0 or not record.command_name:
            continue
        for token in record.address_port_tokens:
            decoded = decode_address_port(token)
            if decoded is None:
                continue
            address, port = decoded
            listeners.append(Listener(
                pid=record.pid,
                command_name=record.command_name,
                user=record.user,
                uid=record.uid,
                address=address,
                port=port,
                protocol=record.protocol,
            ))
    return listeners
