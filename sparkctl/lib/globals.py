'''
Shared module state for sparkctl libraries.
'''

import os
import logging
from logging.handlers import RotatingFileHandler

log = logging.getLogger('sparkctl')

# Warnings collected during a command, printed again in the final summary
warning_list = []


def setup_logging(log_file=None, log_level='INFO'):
    """
    Attach a rotating file handler to the shared logger.

    Console output is done with print() by the callers, so the logger only
    writes to the file. Calling this twice is a no-op.
    """
    log.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))
    if log.handlers or not log_file:
        return log

    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S")
    file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)
    log.addHandler(file_handler)
    return log
