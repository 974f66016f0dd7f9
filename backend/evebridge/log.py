# evebridge/log.py
import logging

LOG_FORMAT = (
    "%(asctime)s | %(name)s | %(levelname)s | "
    "[%(filename)s:%(lineno)d %(funcName)s] | %(threadName)s | %(message)s"
)

def configure_logging(level: str | int = logging.INFO) -> logging.Logger:
    """Console handler unico sul logger del pacchetto; chiamate ripetute non duplicano handler."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger("evebridge")
    root.setLevel(level)
    root.propagate = False

    if not root.handlers:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(ch)
    for h in root.handlers:
        h.setLevel(level)
    return root
