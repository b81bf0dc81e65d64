"""Command-line entry point for running the API server."""
import argparse
from typing import List, Optional

from wallet_topup.config import get_settings


def main(argv: Optional[List[str]] = None) -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Wallet top-up API server")
    parser.add_argument("--host", default=settings.api_host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Bind port")
    parser.add_argument(
        "--workers", type=int, default=settings.api_workers, help="Number of worker processes"
    )
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args(argv)

    import uvicorn

    uvicorn.run(
        "wallet_topup.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=1 if args.reload else args.workers,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
