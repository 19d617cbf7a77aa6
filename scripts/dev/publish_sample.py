#!/usr/bin/env python3
"""
Smoke: publish one uncaptioned photo record and wait for the enriched copy.

Prints the republished record and the stored caption, or exits 1 on timeout.
Env:
  WORKER_REDIS_ADDR      (default: localhost:6379)
  WORKER_REDIS_PASSWD    (default: "")
  WORKER_REDIS_DB        (default: 0)
  WORKER_REDIS_CHANNEL   (default: queue)
  WORKER_OUTPUT_CHANNEL  (default: same as WORKER_REDIS_CHANNEL)
  PHOTO_URL              (default: https://images.dog.ceo/breeds/hound-afghan/n02088094_1003.jpg)
  WAIT_SEC               (default: 60)
"""

import json
import os
import sys
import time
import uuid

import redis

ADDR = os.getenv("WORKER_REDIS_ADDR", "localhost:6379")
PASSWD = os.getenv("WORKER_REDIS_PASSWD", "") or None
DB = int(os.getenv("WORKER_REDIS_DB", "0"))
CHANNEL = os.getenv("WORKER_REDIS_CHANNEL", "queue")
OUTPUT = os.getenv("WORKER_OUTPUT_CHANNEL", "") or CHANNEL
PHOTO_URL = os.getenv(
    "PHOTO_URL", "https://images.dog.ceo/breeds/hound-afghan/n02088094_1003.jpg"
)
WAIT_SEC = float(os.getenv("WAIT_SEC", "60"))


def main():
    host, _, port = ADDR.rpartition(":")
    r = redis.Redis(host=host or "localhost", port=int(port or 6379), password=PASSWD, db=DB, decode_responses=True)

    photo_id = f"smoke-{uuid.uuid4().hex[:8]}"
    record = {
        "chat_id": 0,
        "photo_url": PHOTO_URL,
        "caption": "",
        "styled_url": "",
        "published": False,
        "photo_id": photo_id,
    }

    ps = r.pubsub(ignore_subscribe_messages=True)
    ps.subscribe(OUTPUT)
    receivers = r.publish(CHANNEL, json.dumps(record))
    print(f"[smoke] published {photo_id} to {CHANNEL} ({receivers} subscribers)")

    deadline = time.time() + WAIT_SEC
    while time.time() < deadline:
        msg = ps.get_message(timeout=1.0)
        if not msg:
            continue
        try:
            data = json.loads(msg["data"])
        except (TypeError, ValueError):
            continue
        if data.get("photo_id") == photo_id and data.get("caption"):
            print(f"[smoke] republished: {json.dumps(data)}")
            print(f"[smoke] stored caption: {r.hget(photo_id, 'caption')!r}")
            return 0

    print(f"[smoke] no enriched record for {photo_id} within {WAIT_SEC}s")
    return 1


if __name__ == "__main__":
    sys.exit(main())
