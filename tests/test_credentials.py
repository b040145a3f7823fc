import pytest

from ssr.credentials import (
    CredentialEntry,
    LineKind,
    classify_line,
    parse,
    parse_text,
    secret_name,
    secret_prefix,
    unquote,
)


def test_example_file_yields_single_entry(write_env):
    path = write_env("myapp", '# comment\nAPI_KEY="abc123"\n')
    entries = parse(path)
    assert entries == [CredentialEntry("API_KEY", "abc123")]
    assert secret_name("myapp", entries[0].key) == "myapp_api_key"


def test_missing_file_is_empty(tmp_path):
    assert parse(tmp_path / "nope" / ".env") == []


@pytest.mark.parametrize(
    "line,kind",
    [
        ("", LineKind.BLANK),
        ("   \t", LineKind.BLANK),
        ("# just a note", LineKind.COMMENT),
        ("    # indented note", LineKind.COMMENT),
        ("KEY=value", LineKind.ASSIGNMENT),
        ("  KEY  =  value", LineKind.ASSIGNMENT),
        ("export KEY=value", LineKind.UNRECOGNIZED),
        ("1KEY=value", LineKind.UNRECOGNIZED),
        ("no equals here", LineKind.UNRECOGNIZED),
        ("KEY-NAME=value", LineKind.UNRECOGNIZED),
    ],
)
def test_classify_line(line, kind):
    assert classify_line(line).kind is kind


def test_whitespace_around_equals_is_ignored():
    c = classify_line("  DB_HOST   =   db.internal  ")
    assert c.entry == CredentialEntry("DB_HOST", "db.internal")


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('"abc"', "abc"),
        ("'abc'", "abc"),
        ('""', ""),
        ('"abc', '"abc'),
        ("'abc\"", "'abc\""),
        ('"say "hi""', 'say "hi"'),
        ("it's", "it's"),
        ('""quoted""', '"quoted"'),
        ("plain", "plain"),
    ],
)
def test_unquote_strips_one_matching_pair(raw, expected):
    assert unquote(raw) == expected


def test_value_keeps_embedded_equals_and_hash():
    entries = parse_text("URL=postgres://u:p@h/db?x=1#frag\n")
    assert entries == [CredentialEntry("URL", "postgres://u:p@h/db?x=1#frag")]


def test_order_and_duplicates_are_preserved():
    text = "B=2\nA=1\n\nB=3\n"
    assert [(e.key, e.value) for e in parse_text(text)] == [("B", "2"), ("A", "1"), ("B", "3")]


def test_crlf_and_bom(tmp_path):
    p = tmp_path / ".env"
    p.write_bytes("\ufeffTOKEN='t0k'\r\nOTHER=x\r\n".encode("utf-8"))
    assert parse(p) == [CredentialEntry("TOKEN", "t0k"), CredentialEntry("OTHER", "x")]


def test_only_newline_ends_a_line(tmp_path):
    p = tmp_path / ".env"
    p.write_bytes("A=x\x0cy z\x85w\nB=2\n".encode("utf-8"))
    assert parse(p) == [CredentialEntry("A", "x\x0cy z\x85w"), CredentialEntry("B", "2")]


def test_parse_is_idempotent(write_env):
    path = write_env("svc", "# c\nA=1\nB='two'\n garbage line\nC=\"3\"\n")
    assert parse(path) == parse(path)


def test_secret_name_quoting_does_not_change_identity():
    quoted = parse_text('API_KEY="abc"')[0]
    bare = parse_text("API_KEY=abc")[0]
    assert secret_name("web", quoted.key) == secret_name("web", bare.key) == "web_api_key"


def test_secret_name_is_lowercased_and_deterministic():
    assert secret_name("Test-Web-Server", "API_BASE_URL") == "test-web-server_api_base_url"
    assert secret_name("Test-Web-Server", "API_BASE_URL") == secret_name("Test-Web-Server", "API_BASE_URL")


def test_secret_name_rejects_ambiguous_service_names():
    # "a_b" + "c" and "a" + "b_c" would both give "a_b_c".
    with pytest.raises(ValueError):
        secret_name("a_b", "c")
    assert secret_name("a", "b_c") == "a_b_c"


def test_secret_name_rejects_bad_keys():
    with pytest.raises(ValueError):
        secret_name("svc", "1BAD")


def test_secret_name_injective_over_sample():
    services = ["web", "api", "test-web-server", "a", "a.b", "a-b"]
    keys = ["KEY", "API_KEY", "B_C", "X1", "_PRIVATE", "api__key"]
    pairs = {(s, k.lower()) for s in services for k in keys}
    names = {secret_name(s, k) for s, k in pairs}
    assert len(names) == len(pairs)


def test_secret_prefix():
    assert secret_prefix("MyApp") == "myapp_"
    assert secret_name("MyApp", "TOKEN").startswith(secret_prefix("MyApp"))
