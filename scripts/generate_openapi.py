#!/usr/bin/env python3
"""Write the HTTP service's OpenAPI document to docs/api/openapi.json.

Run after changing routes or payload models so the published schema matches.

Usage:
    python scripts/generate_openapi.py [--output PATH]
"""

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from backup_uploader.core.models import Settings  # noqa: E402
from backup_uploader.server.main import create_app  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--output", type=Path, default=ROOT / "docs" / "api" / "openapi.json")
    args = parser.parse_args()

    schema = create_app(Settings()).openapi()
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(json.dumps(schema, indent=2) + "\n")

    print(f"Wrote {args.output}")
    for path, methods in sorted(schema.get("paths", {}).items()):
        for method in methods:
            print(f"   {method.upper()} {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
