import locale
import logging
import signal
import threading

from decaf.shared.config import AppConfig
from decaf.shared.paths import ensure_app_dirs
from decaf.shared.store import ConfigStore
from decaf.core.logging_ import setup_logging
from decaf.core.service import KeepAwakeService

log = logging.getLogger(__name__)


def bootstrap() -> AppConfig:
    """Logging first, so config problems reach the log file."""
    ensure_app_dirs()
    setup_logging()
    cfg = ConfigStore().load()
    setup_logging(cfg.log_level)

    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error:
        log.warning("Host collation locale unavailable, using C ordering")
    return cfg


def main() -> None:
    cfg = bootstrap()
    service = KeepAwakeService(cfg)
    done = threading.Event()

    def signal_handler(sig, frame):
        log.info(f"Received signal {sig}, shutting down...")
        done.set()

    signal.signal(signal.SIGINT, signal_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, signal_handler)

    service.start()
    try:
        while not done.wait(0.5):
            pass
    finally:
        service.stop()


if __name__ == "__main__":
    main()
