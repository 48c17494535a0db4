#!/usr/bin/env python3
"""
Export object metadata of an aPaaS application as JSON.

Lists every object of the namespace (offset pagination) and fetches the
field metadata of each one.

Usage:
    python -m scripts.export_objects --output objects.json
    python -m scripts.export_objects --namespace app_x --limit 100 --log-level debug

Credentials come from APAAS_NAMESPACE, APAAS_CLIENT_ID and
APAAS_CLIENT_SECRET unless given on the command line.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import orjson

from apaas_client.client import ApaasClient
from apaas_client.config import ClientConfig, env_summary
from apaas_client.errors import ApaasError, AuthError
from apaas_client.logging_config import setup_logging

logger = logging.getLogger(__name__)


async def export_objects(client: ApaasClient, limit: int = 50) -> dict[str, Any]:
    """
    Collect every object with its field metadata.

    Objects whose metadata request fails are kept with ``fields: None`` and
    listed under ``failed``.
    """
    listing = await client.object.list_all(limit=limit)

    objects: list[dict[str, Any]] = []
    failed: list[dict[str, Any]] = []
    for item in listing.items:
        api_name = item.get("apiName") or item.get("api_name")
        if not api_name:
            logger.warning("Object without API name skipped", extra={"keys": sorted(item)})
            continue

        try:
            response = await client.object.metadata.fields(api_name)
        except AuthError:
            raise
        except ApaasError as e:
            logger.error("Failed to fetch fields", extra={"object": api_name, "error": str(e)})
            failed.append({"apiName": api_name, "error": str(e)})
            objects.append({**item, "fields": None})
            continue

        if not response.ok:
            logger.error(
                "Fields request rejected",
                extra={"object": api_name, "code": response.code, "error": response.msg},
            )
            failed.append({"apiName": api_name, "error": response.msg or response.code})
            objects.append({**item, "fields": None})
            continue

        objects.append({**item, "fields": response.data})

    result: dict[str, Any] = {
        "namespace": client.namespace,
        "total": listing.total,
        "objects": objects,
    }
    if failed or listing.failed:
        result["failed"] = failed
        result["failedPages"] = [page.to_dict() for page in listing.failed]
    return result


async def run(args: argparse.Namespace) -> int:
    config = ClientConfig(
        namespace=args.namespace or "",
        client_id=args.client_id or "",
        client_secret=args.client_secret or "",
        base_url=args.base_url or "",
    )
    async with ApaasClient(config) as client:
        await client.init()
        result = await export_objects(client, limit=args.limit)

    payload = orjson.dumps(result, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS)
    if args.output:
        args.output.write_bytes(payload)
        logger.info(
            "Export written",
            extra={"output": str(args.output), "objects": len(result["objects"])},
        )
    else:
        sys.stdout.buffer.write(payload + b"\n")

    return 1 if "failed" in result else 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Export aPaaS object metadata as JSON.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--namespace", type=str, help="Application namespace (default: $APAAS_NAMESPACE)")
    parser.add_argument("--client-id", type=str, help="Client id (default: $APAAS_CLIENT_ID)")
    parser.add_argument(
        "--client-secret",
        type=str,
        help="Client secret (default: $APAAS_CLIENT_SECRET)",
    )
    parser.add_argument("--base-url", type=str, help="API base URL (default: $APAAS_BASE_URL)")
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Objects per list page (default: 50)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        help="Output JSON file (default: stdout)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        help="Log level: trace, debug, info, warning, error (default: info)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log records",
    )
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, json_format=args.json_logs)
    logger.info("Environment", extra={"env": env_summary()})

    try:
        return asyncio.run(run(args))
    except ValueError as e:
        logger.error("Invalid configuration", extra={"error": str(e)})
        return 2
    except ApaasError as e:
        logger.error("Export failed", extra={"error": str(e)})
        return 1


if __name__ == "__main__":
    sys.exit(main())
