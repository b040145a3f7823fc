import pytest

from ssr.discovery import describe, discover_local, discover_remote, filter_names, is_service_name


@pytest.mark.parametrize(
    "name,expected",
    [
        ("web", True),
        ("test-web-server", True),
        ("scripts", False),
        ("docs", False),
        (".git", False),
        (".cache", False),
        ("", False),
    ],
)
def test_is_service_name(name, expected):
    assert is_service_name(name) is expected


def test_only_filter():
    assert filter_names(["a", "b", "docs"], only="b") == {"b"}
    assert filter_names(["a", "b"], only="docs") == set()


def test_custom_reserved_names():
    assert filter_names(["a", "infra"], reserved={"infra"}) == {"a"}


def test_discover_local_lists_immediate_dirs(tmp_path):
    for d in ("web", "api", "scripts", ".git", "web/nested"):
        (tmp_path / d).mkdir(parents=True, exist_ok=True)
    (tmp_path / "README.md").write_text("x")
    assert discover_local(str(tmp_path)) == {"web", "api"}


def test_discover_local_missing_root(tmp_path):
    assert discover_local(str(tmp_path / "missing")) == set()


def test_discover_remote(swarm):
    swarm.dirs.update({"web", "docs", "scripts", ".git", "beszel"})
    assert discover_remote(swarm, swarm.root) == {"web", "beszel"}
    assert swarm.commands[-1].startswith("find /srv/box -mindepth 1 -maxdepth 1 -type d")


def test_describe_variants(swarm, settings, write_env):
    swarm.add_service("compose-build", compose=True, build=True)
    swarm.add_service("dockerfile", compose=True, dockerfile=True)
    swarm.add_service("prebuilt", compose=True)
    swarm.add_service("empty")
    write_env("prebuilt", "K=1\n")

    cb = describe(settings, swarm, "compose-build")
    assert (cb.has_build, cb.build_kind, cb.has_deploy, cb.has_credentials) == (True, "compose", True, False)

    df = describe(settings, swarm, "dockerfile")
    assert (df.has_build, df.build_kind, df.has_deploy) == (True, "dockerfile", True)

    pb = describe(settings, swarm, "prebuilt")
    assert (pb.has_build, pb.has_deploy, pb.has_credentials) == (False, True, True)
    assert pb.artifacts() == ["credentials", "deploy"]

    empty = describe(settings, swarm, "empty")
    assert empty.artifacts() == []
