"""
Bootstrapping code that is run when using the `covwatch-run` Python entrypoint
Everything that needs to run before the measured program goes here
"""
from covwatch.internal.coverage.installer import install
from covwatch.internal.logger import get_logger
from covwatch.settings.coverage import config


log = get_logger(__name__)


install(config)

log.debug("coverage collection started, reports go to %s", config.temp_directory)
