"""
python -m timekeeper [--host H] [--port P] [--config path/to/config.yaml]

Boots the FastAPI control API under uvicorn. Host/port default to
app.server in the config file (127.0.0.1:8000 when absent).
"""
from __future__ import annotations

import argparse
import logging
import os


def main() -> None:
    parser = argparse.ArgumentParser(description="Timekeeper control API")
    parser.add_argument("--host", default=None, help="Bind host (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (overrides config)")
    parser.add_argument("--config", default=None, help="Config file (sets TIMEKEEPER_CONFIG)")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")
    args = parser.parse_args()

    if args.config:
        # must be set before the config module is first imported
        os.environ["TIMEKEEPER_CONFIG"] = args.config

    import uvicorn

    from .config_loader import get_log_level, get_server_bind

    level = get_log_level()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    host, port = get_server_bind()
    host = args.host or host
    port = args.port or port

    logging.getLogger("timekeeper").info("starting on http://%s:%d", host, port)
    uvicorn.run("timekeeper.server:app", host=host, port=port,
                log_level=level.lower(), reload=args.reload)


if __name__ == "__main__":
    main()
