# Listener Aggregator - merges socket records with per-process enrichment.

from typing import Iterable, Mapping

from .display_names import DisplayNameResolver
from .models import Listener, ProcessMetadata

_UNKNOWN = ProcessMetadata()


def aggregate_listeners(
    base: Iterable[Listener],
    metadata_by_pid: Mapping[int, ProcessMetadata],
    resolver: DisplayNameResolver,
) -> list[Listener]:
    """Attach per-pid enrichment, collapse duplicate identities, sort by port.

    Sockets of the same pid share one ProcessMetadata. A repeated identity
    key replaces the earlier entry; the sort is stable so ties keep
    first-seen order.
    """
    merged: dict[tuple[int, str, int, str], Listener] = {}

    for listener in base:
        metadata = metadata_by_pid.get(listener.pid, _UNKNOWN)
        display_name = resolver.resolve(
            listener.command_name,
            metadata.executable_path,
            metadata.full_command,
        )
        merged[listener.identity] = listener.enriched(metadata, display_name)

    return sorted(merged.values(), key=lambda listener: listener.port)
