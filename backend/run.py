"""
Start the Caseflow API with uvicorn.

Usage:
    python run.py                   # API plus the async action worker
    python run.py --reload          # Auto-reload while editing
    python run.py --no-worker       # API only; run the worker elsewhere
    python run.py --workers 4       # Each process runs its own worker; outbox locks keep them apart
"""
import argparse
import os

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Caseflow workflow and case API")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Uvicorn processes (default: 1; forced to 1 with --reload)"
    )
    parser.add_argument(
        "--no-worker",
        action="store_true",
        help="Do not start the action outbox scheduler in this process"
    )
    args = parser.parse_args()

    # Settings are read when caseflow is imported, so this must precede uvicorn.run
    if args.no_worker:
        os.environ["ACTION_WORKER_ENABLED"] = "false"

    workers = 1 if args.reload else args.workers
    print(
        f"Caseflow API on http://{args.host}:{args.port} "
        f"(workers={workers}, reload={args.reload}, action worker={'off' if args.no_worker else 'on'})"
    )

    uvicorn.run(
        "caseflow.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=workers
    )


if __name__ == "__main__":
    main()
