from __future__ import annotations

import argparse

import uvicorn

from reqlog.config import get_settings


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Serve the reqlog demo application")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    args = parser.parse_args()

    # log_config=None keeps the handlers installed by configure_logging().
    uvicorn.run("reqlog.main:create_app", factory=True, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
