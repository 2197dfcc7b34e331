import uvicorn
import argparse
import logging
import os
import threading
import time

from profilevault.config import configure_logging

logger = logging.getLogger("profilevault.run")


def _parent_watcher():
    """
    Best-effort guard: if the parent process dies (e.g. the desktop shell crashes),
    exit the storage host to avoid orphaned sidecars and port collisions.
    """
    ppid = os.getppid()
    while True:
        try:
            # On Unix, kill(pid, 0) checks existence. If parent becomes init (ppid == 1), exit.
            if ppid == 1:
                os._exit(0)
            os.kill(ppid, 0)
        except OSError:
            os._exit(0)
        time.sleep(3)

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="ProfileVault storage host")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host interface to bind")
    parser.add_argument("--port", type=int, default=8334, help="Port to run the storage host on")
    parser.add_argument("--dir", type=str, default="./workspace", help="Directory for the encrypted store")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")

    args = parser.parse_args()

    # Storage config is read from the environment when the app module is imported
    os.environ["PROFILEVAULT_DATA_DIR"] = args.dir
    os.environ["PROFILEVAULT_LOG_LEVEL"] = args.log_level
    configure_logging(args.log_level)

    from profilevault.main import app

    threading.Thread(target=_parent_watcher, daemon=True).start()

    logger.info("Starting storage host on http://%s:%d", args.host, args.port)
    logger.info("Store directory: %s", os.path.abspath(args.dir))

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        reload=False,
        log_level=args.log_level.lower(),
    )
