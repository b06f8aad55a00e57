"""NPC Chatter — host launcher. Starts the API server with the proximity monitor."""

import argparse
import logging
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "13015")


def main():
    parser = argparse.ArgumentParser(description="NPC Chatter host")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Clean and create the demo tavern scene")
    parser.add_argument("--reload", action="store_true",
                        help="Restart the server when code changes")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # uvicorn's factory re-reads DATA_DIR, so export the resolved path
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    if args.demo:
        from backend.demo import create_demo_data
        create_demo_data(Path(os.getenv("DATA_DIR", str(ROOT / "data"))))

    print(f"Starting NPC Chatter on http://localhost:{PORT} ...")
    uvicorn.run(
        "backend.app:create_app", factory=True,
        host=HOST, port=int(PORT), reload=args.reload,
    )


if __name__ == "__main__":
    main()
