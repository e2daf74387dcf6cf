import logging

import colorlog

LOGGER_NAME = "orbiq"


def setup_logger(level_name: str = "INFO") -> logging.Logger:
    """Create the colorlog-backed application logger."""
    handler = colorlog.StreamHandler()
    handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'bold_red',
        }
    ))
    lg = colorlog.getLogger(LOGGER_NAME)
    lg.handlers.clear()
    lg.addHandler(handler)
    lg.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    lg.propagate = False
    return lg
