"""
======================================================================
 SlideFlow Runtime — operator tools
======================================================================
"""

from __future__ import annotations

"""
Comment posting tool.

Creates a room and/or posts comments to a running SlideFlow API. Useful for
smoke-testing overlays during rehearsal.

Design rules:
- No runtime startup
- Talks to the public HTTP API only
- Exit code 0 only when every post was accepted
"""


import argparse
import sys
import time
from typing import List, Optional

import httpx


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def _error(msg: str):
    print(f"[POST ERROR] {msg}", file=sys.stderr)


def create_room(client: httpx.Client) -> Optional[str]:
    resp = client.post("/rooms")
    if resp.status_code != httpx.codes.CREATED:
        _error(f"room creation failed: HTTP {resp.status_code}")
        return None
    payload = resp.json()
    print(f"room:    {payload['roomId']}")
    print(f"overlay: {payload.get('overlayUrl')}")
    print(f"ws:      {payload.get('wsUrl')}")
    return payload["roomId"]


def post_comment(client: httpx.Client, room_id: str, text: str, handle: str) -> bool:
    resp = client.post(
        f"/rooms/{room_id}/messages",
        json={"text": text, "handle": handle},
    )
    if resp.status_code == httpx.codes.ACCEPTED:
        print(f"[ACCEPTED] {text}")
        return True

    try:
        payload = resp.json()
    except ValueError:
        payload = {}
    reason = payload.get("error") or resp.text.strip()
    retry = resp.headers.get("Retry-After")
    suffix = f" (retry after {retry}s)" if retry else ""
    print(f"[REJECTED] {text}: HTTP {resp.status_code} {reason}{suffix}")
    return False


# ------------------------------------------------------------
# Entrypoint
# ------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Post comments to a SlideFlow room")
    parser.add_argument("--base-url", default="http://127.0.0.1:8080")
    parser.add_argument("--room", help="existing room id; omitted creates a new room")
    parser.add_argument("--handle", default="")
    parser.add_argument("--interval", type=float, default=2.1, help="seconds between posts")
    parser.add_argument("text", nargs="*", help="comments to post")
    args = parser.parse_args(argv)

    ok = True
    with httpx.Client(base_url=args.base_url, timeout=10.0) as client:
        try:
            room_id = args.room or create_room(client)
            if not room_id:
                return 1

            for i, text in enumerate(args.text):
                if i:
                    time.sleep(args.interval)
                ok = post_comment(client, room_id, text, args.handle) and ok
        except httpx.HTTPError as e:
            _error(f"request failed: {e}")
            return 1

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
