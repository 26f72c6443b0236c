import argparse
import sys
from pathlib import Path

import uvicorn

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.config import settings


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the reviews API with uvicorn.")
    parser.add_argument("--host", default=settings.host, help=f"Bind address (default: {settings.host}).")
    parser.add_argument("--port", type=int, default=settings.port, help=f"Bind port (default: {settings.port}).")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development only).")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    uvicorn.run(
        "src.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
