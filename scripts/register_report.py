"""Fetch and print today's virtual cash register totals."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for the daily register report."""

    parser = argparse.ArgumentParser(description="Fetch today's cash register summary.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default="change-me")
    args = parser.parse_args()

    resp = httpx.get(
        f"{args.base_url}/cash-registers/today",
        headers={"x-api-key": args.api_key},
        timeout=10.0,
    )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
