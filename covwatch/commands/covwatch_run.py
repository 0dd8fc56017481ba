#!/usr/bin/env python
import argparse
from functools import partial
import logging
import os
import shutil
import subprocess
import sys
import typing as t

import covwatch
from covwatch.internal.coverage.cache import InstrumentationCache
from covwatch.internal.coverage.code import load_skeleton
from covwatch.internal.coverage.data import CoverageMap
from covwatch.internal.coverage.exclusion import ExclusionPolicy
from covwatch.internal.coverage.handlers import ExtensionHandlers
from covwatch.internal.coverage.instrumentation import AstInstrumenter
from covwatch.internal.coverage.merge import add_all_files
from covwatch.internal.coverage.merge import load_reports
from covwatch.internal.coverage.merge import merge
from covwatch.internal.coverage.persistence import new_process_id
from covwatch.internal.coverage.report import print_coverage_report
from covwatch.internal.coverage.report import write_json_report
from covwatch.settings.coverage import CoverageConfig


# Do not use `covwatch.internal.logger.get_logger` here
# DEV: no actual rate limiting would apply here since we only have a few
#      logged lines
log = logging.getLogger(__name__)

USAGE = """
Execute the given command, collecting the coverage of every Python process it
starts, then merge and report it.


Examples
covwatch-run python -m pytest
covwatch-run --all python app.py
"""


def _add_bootstrap_to_pythonpath(env, bootstrap_dir):
    # type: (t.Dict[str, str], str) -> None
    """
    Add our bootstrap directory to the head of $PYTHONPATH to ensure
    it is loaded before program code
    """
    python_path = env.get("PYTHONPATH", "")

    if python_path:
        env["PYTHONPATH"] = "%s%s%s" % (bootstrap_dir, os.path.pathsep, python_path)
    else:
        env["PYTHONPATH"] = bootstrap_dir


def prepare_directories(config, clean=True):
    # type: (CoverageConfig, bool) -> None
    if clean:
        shutil.rmtree(config.temp_directory, ignore_errors=True)
    os.makedirs(config.temp_directory, exist_ok=True)
    if config.cache:
        os.makedirs(config.cache_directory, exist_ok=True)


def child_environment(config, parent_id):
    # type: (CoverageConfig, str) -> t.Dict[str, str]
    env = dict(os.environ)
    env.update(config.child_environment())
    env["COVWATCH_PARENT_ID"] = parent_id

    bootstrap_dir = os.path.join(os.path.dirname(covwatch.__file__), "bootstrap")
    log.debug("covwatch bootstrap: %s", bootstrap_dir)
    _add_bootstrap_to_pythonpath(env, bootstrap_dir)
    log.debug("PYTHONPATH: %s", env["PYTHONPATH"])

    return env


def run(command, env):
    # type: (t.List[str], t.Dict[str, str]) -> int
    process = subprocess.Popen(command, env=env)
    while True:
        try:
            return process.wait()
        except KeyboardInterrupt:
            # The child got the same SIGINT and decides how to end
            continue


def collect(config):
    # type: (CoverageConfig) -> CoverageMap
    """Merge the reports of every process of the run."""
    coverage_map = merge(load_reports(config.temp_directory))
    handlers = ExtensionHandlers.from_config(config)
    policy = ExclusionPolicy.from_config(config, extensions=handlers.extensions)

    if config.all_files:
        cache = InstrumentationCache(
            AstInstrumenter.from_config(config), config.cache_directory, enabled=config.cache
        )
        add_all_files(
            coverage_map,
            config.cwd,
            policy.eligible_files(),
            partial(load_skeleton, handlers=handlers, cache=cache),
        )

    return coverage_map.filter(policy.should_report)


def exit_status(returncode):
    # type: (int) -> int
    # A child killed by a signal is reported the way shells do
    return 128 - returncode if returncode < 0 else returncode


def main(argv=None):
    # type: (t.Optional[t.List[str]]) -> None
    parser = argparse.ArgumentParser(
        description=USAGE,
        prog="covwatch-run",
        usage="covwatch-run [options] <your usual python command>",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, type=str, help="Command string to execute.")
    parser.add_argument("-d", "--debug", help="enable debug mode (disabled by default)", action="store_true")
    parser.add_argument(
        "-a", "--all", help="report files that were never loaded with zero coverage", action="store_true"
    )
    parser.add_argument(
        "--no-clean", help="keep the reports of previous runs in the temporary directory", action="store_true"
    )
    parser.add_argument("--no-report", help="only collect, do not merge and report", action="store_true")
    parser.add_argument("-v", "--version", action="version", version="%(prog)s " + covwatch.__version__)
    args = parser.parse_args(argv)

    if args.debug:
        logging.basicConfig(level=logging.DEBUG)
        os.environ["COVWATCH_DEBUG"] = "true"

    if not args.command:
        parser.print_help()
        sys.exit(1)

    executable = shutil.which(args.command[0])
    if not executable:
        print("covwatch-run: failed to find executable '%s'.\n" % args.command[0])
        parser.print_usage()
        sys.exit(1)

    log.debug("program executable: %s", executable)

    config = CoverageConfig.from_options(all=True if args.all else None)
    prepare_directories(config, clean=not args.no_clean)

    try:
        returncode = run([executable] + args.command[1:], child_environment(config, new_process_id()))
    except OSError as e:
        print("covwatch-run: cannot execute '%s': %s\n" % (executable, e))
        parser.print_usage()
        sys.exit(1)

    if returncode < 0:
        log.debug("program terminated by signal %d", -returncode)

    if not args.no_report:
        coverage_map = collect(config)
        path = write_json_report(coverage_map, config.report_directory)
        log.debug("merged coverage written to %s", path)
        print_coverage_report(coverage_map, config.cwd)

    sys.exit(exit_status(returncode))


if __name__ == "__main__":
    main()
