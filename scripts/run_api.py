#!/usr/bin/env python3
"""
Serve the document index API with uvicorn.
"""

import argparse
import sys
from pathlib import Path

import uvicorn

# Add the repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docindex.core.config import DEBUG, validate_config


def main():
    parser = argparse.ArgumentParser(description="Run the document index API")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=8000, help="Port to serve on (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    issues = validate_config()
    for issue in issues:
        print(f"WARNING: {issue}")

    uvicorn.run(
        "docindex.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="debug" if DEBUG else "info",
    )


if __name__ == "__main__":
    main()
