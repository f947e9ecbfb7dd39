from collectors.errors import TIMEOUT, ToolTimeout
from collectors.ports import PortCollector, base_listeners, decode_address_port, parse_tagged_records


LSOF_TCP = """p100
cnode
u501
Lalice
f23
PTCP
n127.0.0.1:3000
TST=LISTEN
f24
PTCP
n[::1]:3000
TST=LISTEN
p200
cpostgres
u501
Lalice
f7
PTCP
n*:5432
"""


def test_parser_emits_one_record_per_process():
    records = parse_tagged_records(LSOF_TCP, "tcp")

    assert [r.pid for r in records] == [100, 200]
    assert records[0].command_name == "node"
    assert records[0].uid == 501
    assert records[0].user == "alice"
    assert records[0].address_port_tokens == ("127.0.0.1:3000", "[::1]:3000")
    assert records[1].address_port_tokens == ("*:5432",)
    assert all(r.protocol == "tcp" for r in records)


def test_parser_final_flush_does_not_duplicate():
    output = "p1\ncone\nn*:1\np2\nctwo\nn*:2\n"
    records = parse_tagged_records(output, "udp")
    assert len(records) == 2
    assert records[-1].pid == 2


def test_parser_ignores_unknown_tags_blank_lines_and_orphans():
    output = "ncontent-before-any-process\n\nZweird\np300\ncredis-ser\nRsomething\n\nn127.0.0.1:6379\n"
    records = parse_tagged_records(output, "tcp")
    assert len(records) == 1
    assert records[0].pid == 300
    assert records[0].address_port_tokens == ("127.0.0.1:6379",)


def test_parser_skips_empty_accumulator():
    assert parse_tagged_records("", "tcp") == []
    assert parse_tagged_records("pnot-a-pid\n", "tcp") == []


def test_parser_keeps_record_with_command_but_bad_uid():
    records = parse_tagged_records("p42\ncsshd\nuroot\n", "tcp")
    assert records[0].uid is None
    assert records[0].command_name == "sshd"


def test_parser_ignores_non_ascii_digits():
    records = parse_tagged_records("p\u00b2\ncnode\nu\u0663\nn*:80\np7\ncsshd\nu\u00b9\nn*:22\n", "tcp")
    assert [(r.pid, r.uid) for r in records] == [(None, None), (7, None)]
    assert [l.pid for l in base_listeners(records)] == [7]


def test_decode_examples():
    assert decode_address_port("127.0.0.1:3000 (LISTEN)") == ("127.0.0.1", 3000)
    assert decode_address_port("*:8080") == ("*", 8080)
    assert decode_address_port("::1:53") == ("::1", 53)
    assert decode_address_port("[fe80::1%lo0]:5353") == ("fe80::1%lo0", 5353)


def test_decode_is_idempotent_on_canonical_forms():
    for token in ("127.0.0.1:3000", "*:8080", "::1:53", "[::1]:53"):
        address, port = decode_address_port(token)
        assert decode_address_port(f"{address}:{port}") == (address, port)


def test_decode_rejects_connected_and_malformed_tokens():
    assert decode_address_port("127.0.0.1:12345->8.8.8.8:53") is None
    assert decode_address_port("localhost") is None
    assert decode_address_port(":80") is None
    assert decode_address_port("*:*") is None
    assert decode_address_port("127.0.0.1:-1") is None
    assert decode_address_port("127.0.0.1:70000") is None
    assert decode_address_port("") is None


def test_base_listeners_requires_pid_command_and_decodable_token():
    records = parse_tagged_records(
        "p10\ncudp-app\nn127.0.0.1:5000\nn127.0.0.1:5001->10.0.0.1:53\nnbogus\n"
        "p11\nn*:9999\n",
        "udp",
    )
    listeners = base_listeners(records)
    assert [(l.pid, l.address, l.port, l.protocol) for l in listeners] == [(10, "127.0.0.1", 5000, "udp")]


def test_collector_command_restricts_tcp_to_listen_state(settings):
    tcp = PortCollector(settings, "tcp").get_command()
    udp = PortCollector(settings, "udp").get_command()
    assert "-sTCP:LISTEN" in tcp
    assert "-iTCP" in tcp
    assert "-iUDP" in udp
    assert "-sTCP:LISTEN" not in udp


def test_collector_treats_lsof_no_match_as_empty(settings, executor):
    collector = PortCollector(settings, "udp")
    executor.add(collector.get_command(), stdout="", returncode=1)
    result = collector.execute(executor)
    assert result.ok
    assert result.value == []


def test_collector_timeout_is_unknown_not_error(settings, executor):
    collector = PortCollector(settings, "tcp")
    executor.fail(collector.get_command(), ToolTimeout("lsof timed out"))
    result = collector.execute(executor)
    assert not result.ok
    assert result.reason == TIMEOUT
    assert result.value == []


def test_collector_nonzero_exit_with_output_is_failure(settings, executor):
    collector = PortCollector(settings, "tcp")
    executor.add(collector.get_command(), stdout="p1\n", returncode=2)
    result = collector.execute(executor)
    assert result.reason == "tool-failed"
