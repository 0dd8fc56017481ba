import json
import os
from pathlib import Path
import subprocess
import sys
from textwrap import dedent


def call_program(*args, **kwargs):
    timeout = kwargs.pop("timeout", None)
    if "env" in kwargs:
        # Remove all keys with the value None from env, None is used to unset an environment variable
        env = kwargs.pop("env")
        cleaned_env = {env: val for env, val in env.items() if val is not None}
        kwargs["env"] = cleaned_env
    close_fds = sys.platform != "win32"
    subp = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE, close_fds=close_fds, **kwargs)
    try:
        stdout, stderr = subp.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        subp.terminate()
        stdout, stderr = subp.communicate(timeout=timeout)
    return stdout, stderr, subp.wait(), subp.pid


def write_module(directory, name, source):
    """Write ``source`` to ``directory/name`` and return its resolved path as a string."""
    path = Path(directory) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dedent(source).lstrip("\n"))
    return str(path.resolve())


def read_reports(directory):
    return [json.loads(p.read_text()) for p in sorted(Path(directory).glob("*.json"))]


def report_files(directory):
    if not os.path.isdir(str(directory)):
        return []
    return sorted(p for p in os.listdir(str(directory)) if p.endswith(".json"))
