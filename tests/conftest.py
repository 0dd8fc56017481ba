import ast
from itertools import product
import os
from pathlib import Path
import sys
from tempfile import NamedTemporaryFile

from _pytest.runner import call_and_report
from _pytest.runner import pytest_runtest_protocol as default_pytest_runtest_protocol
import pytest

from covwatch.internal.coverage.code import SourceCodeCollector
from covwatch.settings.coverage import CoverageConfig
from tests.utils import call_program


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "subprocess(status=0, out='', err='', env={}, args=[], parametrize=None, timeout=None): "
        "run the body of the test function in a fresh interpreter",
    )


@pytest.fixture
def run_python_code_in_subprocess(tmp_path):
    def _run(code, **kwargs):
        pyfile = tmp_path / "subprocess_code.py"
        pyfile.write_text(code)
        env = _subprocess_env(kwargs.pop("env", None))
        return call_program(sys.executable, str(pyfile), env=env, **kwargs)

    yield _run


def _subprocess_env(overrides=None):
    env = os.environ.copy()
    pythonpath = os.getenv("PYTHONPATH", None)
    base_path = os.path.dirname(os.path.dirname(__file__))
    env["PYTHONPATH"] = os.pathsep.join((base_path, pythonpath)) if pythonpath is not None else base_path
    for key, value in (overrides or {}).items():
        if value is None:  # None means remove the variable
            env.pop(key, None)
        else:
            env[key] = value
    return env


@pytest.fixture
def coverage_config(tmp_path):
    return CoverageConfig.from_options(
        cwd=str(tmp_path),
        cache=False,
        temp_dir=str(tmp_path / ".covwatch_output"),
    )


@pytest.fixture
def collector(coverage_config, tmp_path, monkeypatch):
    """Install a collector measuring the modules written to ``tmp_path``."""
    assert not SourceCodeCollector.is_installed()

    monkeypatch.syspath_prepend(str(tmp_path))
    before = set(sys.modules)

    SourceCodeCollector.install(config=coverage_config, persist=False)
    try:
        yield SourceCodeCollector._instance
    finally:
        SourceCodeCollector.uninstall()
        root = Path(tmp_path).resolve()
        for name in set(sys.modules) - before:
            module_file = getattr(sys.modules[name], "__file__", None)
            if module_file is not None and Path(module_file).resolve().is_relative_to(root):
                del sys.modules[name]


def unwind_params(params):
    if params is None:
        yield None
        return

    for _ in product(*([(k, v) for v in vs] for k, vs in params.items())):
        yield dict(_)


class FunctionDefFinder(ast.NodeVisitor):
    def __init__(self, func_name):
        super(FunctionDefFinder, self).__init__()
        self.func_name = func_name
        self._body = None

    def generic_visit(self, node):
        return self._body or super(FunctionDefFinder, self).generic_visit(node)

    def visit_FunctionDef(self, node):
        if node.name == self.func_name:
            self._body = node.body

    def find(self, file):
        with open(file) as f:
            t = ast.parse(f.read())
            self.visit(t)
            t.body = self._body
            return t


def is_stream_ok(stream, expected):
    if expected is None:
        return True

    if isinstance(expected, str):
        ex = expected.encode("utf-8")
    elif isinstance(expected, bytes):
        ex = expected
    else:
        # Assume it's a callable condition
        return expected(stream.decode("utf-8"))

    return stream == ex


def run_function_from_file(item, params=None):
    file, _, func = item.location
    marker = item.get_closest_marker("subprocess")

    args = [sys.executable]

    timeout = marker.kwargs.get("timeout", None)

    env = _subprocess_env(marker.kwargs.get("env", {}))
    if params is not None:
        env.update(params)

    expected_status = marker.kwargs.get("status", 0)
    expected_out = marker.kwargs.get("out", "")
    expected_err = marker.kwargs.get("err", "")

    with NamedTemporaryFile(mode="w", suffix=".py", delete=False) as fp:
        fp.write(ast.unparse(FunctionDefFinder(func).find(os.path.join(str(item.config.rootpath), file))))

    try:
        args.append(fp.name)

        # Add any extra requested args
        args.extend(marker.kwargs.get("args", []))

        out, err, status, _ = call_program(*args, env=env, timeout=timeout)

        if status != expected_status:
            raise AssertionError(
                "Expected status %s, got %s."
                "\n=== Captured STDOUT ===\n%s=== End of captured STDOUT ==="
                "\n=== Captured STDERR ===\n%s=== End of captured STDERR ==="
                % (expected_status, status, out.decode("utf-8"), err.decode("utf-8"))
            )

        if not is_stream_ok(out, expected_out):
            raise AssertionError("STDOUT: Expected [%s] got [%s]" % (expected_out, out))

        if not is_stream_ok(err, expected_err):
            raise AssertionError("STDERR: Expected [%s] got [%s]" % (expected_err, err))
    finally:
        os.unlink(fp.name)


@pytest.hookimpl(tryfirst=True)
def pytest_runtest_protocol(item):
    if item.get_closest_marker("skip"):
        return default_pytest_runtest_protocol(item, None)

    skipif = item.get_closest_marker("skipif")
    if skipif:
        return default_pytest_runtest_protocol(item, None)

    marker = item.get_closest_marker("subprocess")
    if marker:
        params = marker.kwargs.get("parametrize", None)
        ihook = item.ihook
        base_name = item.nodeid

        for ps in unwind_params(params):
            nodeid = (base_name + str(ps)) if ps is not None else base_name

            # Start
            ihook.pytest_runtest_logstart(nodeid=nodeid, location=item.location)

            # Setup
            report = call_and_report(item, "setup", log=False)
            report.nodeid = nodeid
            ihook.pytest_runtest_logreport(report=report)

            # Call
            item.runtest = lambda: run_function_from_file(item, ps)  # noqa: B023
            report = call_and_report(item, "call", log=False)
            report.nodeid = nodeid
            ihook.pytest_runtest_logreport(report=report)

            # Teardown
            report = call_and_report(item, "teardown", log=False, nextitem=None)
            report.nodeid = nodeid
            ihook.pytest_runtest_logreport(report=report)

            # Finish
            ihook.pytest_runtest_logfinish(nodeid=nodeid, location=item.location)

        return True
