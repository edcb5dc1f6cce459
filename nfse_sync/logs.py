import logging
from nfse_sync.settings import settings

_FORMAT = '[NFSE] %(asctime)s %(levelname)s %(message)s'

def get_logger(name:str) -> logging.Logger:
    """Logger da hierarquia "nfse". Com NFSE_DEBUG, o pai recebe um StreamHandler (uma vez só)."""
    root = logging.getLogger("nfse")
    if settings.NFSE_DEBUG and not root.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(h)
        root.setLevel(logging.DEBUG)
    return logging.getLogger(f"nfse.{name}")
