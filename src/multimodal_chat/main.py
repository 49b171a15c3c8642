"""CLI entrypoint for running the FastAPI app with uvicorn."""

from __future__ import annotations

import argparse
import os

import uvicorn


def main() -> None:
    """Run the ASGI server."""

    parser = argparse.ArgumentParser(description="Multimodal chat backend")
    parser.add_argument("--host", default=os.environ.get("MULTICHAT_HOST", "0.0.0.0"))
    parser.add_argument(
        "--port", type=int, default=int(os.environ.get("MULTICHAT_PORT", "8000"))
    )
    args = parser.parse_args()

    uvicorn.run(
        "multimodal_chat.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=False,
    )


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
