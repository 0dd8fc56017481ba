"""
Bootstrapping code that is run when using the `covwatch-run` Python entrypoint
"""

# The collector itself is set up by preload.py. This module only chains to the
# sitecustomize the program would have loaded without covwatch-run.
import covwatch  # isort:skip
import os
import sys

from covwatch.internal.logger import get_logger


log = get_logger(__name__)


try:
    import covwatch.bootstrap.preload as preload  # noqa:F401 Perform the actual initialisation

    # Check for and import any sitecustomize that would have normally been used
    # had covwatch-run not been used.
    bootstrap_dir = os.path.dirname(__file__)
    if bootstrap_dir in sys.path:
        index = sys.path.index(bootstrap_dir)
        del sys.path[index]

        # Keep this module importable under its package name
        covwatch_sitecustomize = sys.modules.pop("sitecustomize", None)
        if "covwatch.bootstrap.sitecustomize" not in sys.modules and covwatch_sitecustomize is not None:
            sys.modules["covwatch.bootstrap.sitecustomize"] = covwatch_sitecustomize

        try:
            import sitecustomize  # noqa:F401
        except ImportError:
            # If an additional sitecustomize is not found then put the covwatch
            # sitecustomize back.
            log.debug("additional sitecustomize not found")
            if covwatch_sitecustomize is not None:
                sys.modules["sitecustomize"] = covwatch_sitecustomize
        else:
            log.debug("additional sitecustomize found in: %s", sys.path)
        finally:
            # Always reinsert the covwatch bootstrap directory to the path so
            # that introspection and debugging the application makes sense.
            # Note that this does not interfere with imports since a user
            # sitecustomize, if it exists, will be imported.
            sys.path.insert(index, bootstrap_dir)
    else:
        try:
            import sitecustomize  # noqa:F401
        except ImportError:
            log.debug("additional sitecustomize not found")
        else:
            log.debug("additional sitecustomize found in: %s", sys.path)

    # Loading status used in tests to detect if the `sitecustomize` has been
    # properly loaded without exceptions. This must be the last action in the module
    # when the execution ends with a success.
    loaded = True
except Exception:
    loaded = False
    log.warning("error configuring covwatch coverage collection", exc_info=True)
