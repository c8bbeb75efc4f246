import logging

from pythonjsonlogger import jsonlogger


def setup_logger(level: str = "INFO") -> None:
    logger = logging.getLogger()
    logger.setLevel(level)
    if any(isinstance(h.formatter, jsonlogger.JsonFormatter) for h in logger.handlers):
        return
    log_handler = logging.StreamHandler()
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "asctime": "timestamp"},
    )
    log_handler.setFormatter(formatter)
    logger.addHandler(log_handler)
