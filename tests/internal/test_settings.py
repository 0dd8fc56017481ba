import os

import pytest

from covwatch.settings._core import options_source
from covwatch.settings.coverage import CoverageConfig
from covwatch.settings.coverage import find_project_root


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in list(os.environ):
        if name.startswith("COVWATCH_"):
            monkeypatch.delenv(name)


def test_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = CoverageConfig()

    assert config.extension == [".py"]
    assert config.include is None
    assert config.exclude is None
    assert config.exclude_dependencies
    assert config.cache
    assert not config.is_child_process
    assert not config.caching_enabled
    assert not config.all_files
    assert config.transform is None
    assert config.cwd == str(tmp_path.resolve())
    assert config.temp_directory == str(tmp_path.resolve() / ".covwatch_output")
    assert config.report_directory == str(tmp_path.resolve() / "coverage")


def test_options_source():
    assert options_source("covwatch", cache=False, exclude=["a/**", "b"], cwd=None) == {
        "COVWATCH_CACHE": "false",
        "COVWATCH_EXCLUDE": "a/**,b",
    }


def test_list_parsing(monkeypatch):
    monkeypatch.setenv("COVWATCH_INCLUDE", " src/**, ,lib/*.py ")
    monkeypatch.setenv("COVWATCH_EXTENSION", ".pyx,.py,.pyt")

    config = CoverageConfig()

    assert config.include == ["src/**", "lib/*.py"]
    assert config.extension == [".py", ".pyx", ".pyt"]


def test_empty_exclude_is_not_default():
    assert CoverageConfig.from_options(exclude=[]).exclude == []
    assert CoverageConfig.from_options().exclude is None


def test_explicit_source_beats_environment(monkeypatch):
    monkeypatch.setenv("COVWATCH_CACHE", "true")

    config = CoverageConfig.from_options(cache=False)

    assert not config.cache
    assert config.is_explicit("COVWATCH_CACHE")
    assert not config.is_explicit("COVWATCH_BRANCHES")


def test_cwd_precedence(tmp_path, monkeypatch):
    project = tmp_path / "project"
    nested = project / "pkg" / "sub"
    nested.mkdir(parents=True)
    (project / "pyproject.toml").write_text("")
    other = tmp_path / "other"
    other.mkdir()

    monkeypatch.chdir(nested)
    assert CoverageConfig().cwd == str(project.resolve())

    monkeypatch.setenv("COVWATCH_CWD", str(other))
    assert CoverageConfig().cwd == str(other.resolve())

    assert CoverageConfig.from_options(cwd=str(nested)).cwd == str(nested.resolve())


def test_find_project_root(tmp_path):
    (tmp_path / "setup.cfg").write_text("")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert find_project_root(nested) == tmp_path.resolve()


@pytest.mark.parametrize(
    "cache,child,expected",
    [(True, True, True), (True, False, False), (False, True, False), (False, False, False)],
)
def test_caching_enabled(cache, child, expected):
    config = CoverageConfig.from_options(cache=cache, is_child_process=child)

    assert config.caching_enabled is expected


def test_child_environment_round_trip(tmp_path):
    config = CoverageConfig.from_options(
        cwd=str(tmp_path),
        include=["src/**"],
        exclude=[],
        extension=[".pyt"],
        transform="pkg.mod:transform",
        branches=False,
    )

    env = config.child_environment()

    assert env["COVWATCH_IS_CHILD_PROCESS"] == "true"
    assert env["COVWATCH_CWD"] == str(tmp_path.resolve())
    assert "COVWATCH_INCLUDE" in env

    child = CoverageConfig(source=env)

    assert child.is_child_process
    assert child.caching_enabled
    assert child.cwd == config.cwd
    assert child.include == ["src/**"]
    assert child.exclude == []
    assert child.extension == [".py", ".pyt"]
    assert child.transform == "pkg.mod:transform"
    assert not child.branches
    assert child.temp_directory == config.temp_directory
    assert child.cache_directory == config.cache_directory


def test_child_environment_keeps_default_exclude(tmp_path):
    env = CoverageConfig.from_options(cwd=str(tmp_path)).child_environment()

    assert "COVWATCH_EXCLUDE" not in env
    assert CoverageConfig(source=env).exclude is None
