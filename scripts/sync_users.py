#!/usr/bin/env python3
"""
Materialize in the profile service every user known to the identity service.

Usage:
    python scripts/sync_users.py
    python scripts/sync_users.py --user-id 42

Environment Variables:
    INTERNAL_SERVICE_TOKEN: Shared internal-service header value
    PROFILE_SERVICE_URL: Profile service base URL (default: http://localhost:8001)
"""

import argparse
import os
import sys

import dotenv
import requests

dotenv.load_dotenv()


def sync(user_id: int | None = None) -> dict:
    """Call the profile service sync endpoint."""
    token = os.getenv("INTERNAL_SERVICE_TOKEN")
    if not token:
        print("Error: INTERNAL_SERVICE_TOKEN environment variable not set", file=sys.stderr)
        sys.exit(1)

    base_url = os.getenv("PROFILE_SERVICE_URL", "http://localhost:8001")
    path = f"/api/v1/users/sync/{user_id}" if user_id is not None else "/api/v1/users/sync"

    try:
        response = requests.post(
            f"{base_url}{path}",
            headers={"X-Internal-Service": token},
            timeout=60,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.HTTPError as e:
        print(f"HTTP Error: {e}", file=sys.stderr)
        print(f"Response: {e.response.text}", file=sys.stderr)
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"Request Error: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Replicate identity users into the profile service")
    parser.add_argument("--user-id", type=int, help="Only synchronize this user")
    args = parser.parse_args()

    result = sync(args.user_id)

    if args.user_id is not None:
        print(f"✓ User {result['id']} ({result['email']}) is present")
    else:
        print("✓ Synchronization finished")
        print(f"   Created:  {result['synchronized']}")
        print(f"   Existing: {result['existing']}")
        print(f"   Total:    {result['total']}")


if __name__ == "__main__":
    main()
