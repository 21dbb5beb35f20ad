from .logger import logger as logger
from .logging import LogConfig as LogConfig
from .logging import setup_logging as setup_logging
from .logging import teardown_logging as teardown_logging

__all__ = ["LogConfig", "logger", "setup_logging", "teardown_logging"]
