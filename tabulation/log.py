import logging

from tabulation.config import load_settings

_LOGGERS = {}

FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Create or retrieve a named logger under the ``tabulation`` namespace.

    Handlers are attached once per name; the level and the optional log file
    come from the environment-backed settings.
    """
    if name in _LOGGERS:
        return _LOGGERS[name]

    settings = load_settings()
    logger = logging.getLogger(f"tabulation.{name}")
    logger.setLevel(settings.log_level)

    formatter = logging.Formatter(FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    _LOGGERS[name] = logger
    return logger
