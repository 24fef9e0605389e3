# launcher.py
import argparse
import logging
import os
import sys

from dotenv import load_dotenv

# --- Constante ---
ENV_FILE = ".env"

# --- Configuración del logging ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - [Launcher] - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Creditbook API server")
    parser.add_argument("--host", default=None, help="Bind address (UVICORN_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Listen port (UVICORN_PORT)")
    parser.add_argument("--workers", type=int, default=None, help="Worker processes (UVICORN_WORKERS)")
    parser.add_argument("--init-db", action="store_true", help="Create tables and exit")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    load_dotenv(ENV_FILE, override=True)
    args = parse_args(argv)

    if args.init_db:
        from creditbook.db.engine import create_db_and_tables

        create_db_and_tables()
        logger.info("Database tables created.")
        return 0

    import uvicorn

    host = args.host or os.getenv("UVICORN_HOST", "0.0.0.0")
    port = args.port or int(os.getenv("UVICORN_PORT", "7777"))
    workers = args.workers or int(os.getenv("UVICORN_WORKERS", "1"))

    logger.info(f"Starting API on {host}:{port} with {workers} worker(s)")
    uvicorn.run(
        "creditbook.main:app",
        host=host,
        port=port,
        workers=workers,
        log_level="info",
        server_header=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
