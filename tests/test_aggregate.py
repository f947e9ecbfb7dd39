from collectors.aggregate import aggregate_listeners
from collectors.display_names import DisplayNameResolver
from collectors.models import Listener, ProcessMetadata


def _listener(pid, port, protocol="tcp", address="127.0.0.1", command="node"):
    return Listener(pid=pid, command_name=command, address=address, port=port, protocol=protocol)


def test_same_pid_sockets_share_one_enrichment():
    metadata = {100: ProcessMetadata(
        working_directory="/Users/alice/app",
        executable_path="/usr/local/bin/node",
        command_line="server.js",
        started_at="Mon Oct 19 09:59:00 2026",
        full_command="node",
        cpu_percent=1.5,
        memory_bytes=4096,
    )}
    base = [_listener(100, 3000, "tcp"), _listener(100, 3000, "udp")]

    listeners = aggregate_listeners(base, metadata, DisplayNameResolver())

    assert len(listeners) == 2
    tcp, udp = listeners
    assert {tcp.protocol, udp.protocol} == {"tcp", "udp"}
    for listener in listeners:
        assert listener.working_directory == "/Users/alice/app"
        assert listener.executable_path == "/usr/local/bin/node"
        assert listener.cpu_percent == 1.5
        assert listener.memory_bytes == 4096
        assert listener.display_name == "node"
    assert tcp.identity != udp.identity


def test_duplicate_identity_collapses_last_write_wins():
    first = _listener(7, 80, command="old")
    second = _listener(7, 80, command="new")

    listeners = aggregate_listeners([first, second], {}, DisplayNameResolver())

    assert len(listeners) == 1
    assert listeners[0].command_name == "new"


def test_output_sorted_by_port_with_stable_ties():
    base = [
        _listener(3, 8080),
        _listener(1, 22, address="*"),
        _listener(2, 8080, address="::1"),
        _listener(4, 443),
    ]

    listeners = aggregate_listeners(base, {}, DisplayNameResolver())

    assert [l.port for l in listeners] == [22, 443, 8080, 8080]
    assert [l.pid for l in listeners if l.port == 8080] == [3, 2]


def test_missing_metadata_leaves_enrichment_unknown():
    listeners = aggregate_listeners([_listener(9, 5000, command="ControlCe")], {},
                                    DisplayNameResolver({"ControlCe": "Control Center"}))
    listener = listeners[0]
    assert listener.executable_path is None
    assert listener.cpu_percent is None
    assert listener.display_name == "Control Center"


def test_input_records_are_not_mutated():
    base = [_listener(5, 9000)]
    aggregate_listeners(base, {5: ProcessMetadata(cpu_percent=2.0)}, DisplayNameResolver())
    assert base[0].cpu_percent is None
    assert base[0].display_name is None


def test_distinct_keys_survive_many_duplicates():
    base = [_listener(pid % 3, 1000 + pid % 2) for pid in range(30)]
    listeners = aggregate_listeners(base, {}, DisplayNameResolver())
    keys = [l.identity for l in listeners]
    assert len(keys) == len(set(keys)) == 6
    assert [l.port for l in listeners] == sorted(l.port for l in listeners)
