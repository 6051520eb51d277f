"""Aggregator service — reads request events, ranks traffic, publishes alarms.

Consumes HTTP request events from Kafka, feeds one observation per request
(keyed by host, broken down by top-level section) into the aggregator, and
prints the ranked top sites every reporting interval.  Triggered/resolved
alarm events are printed and published to the alarms topic.

Usage:
    python -m aggregator.main
    python -m aggregator.main --config config/aggregator.yml --threshold 25
    python -m aggregator.main --bootstrap-servers kafka-1:29092 --input-topic http-requests
"""

import argparse
import json
import logging
import re
import signal
import sys
from pathlib import Path

from confluent_kafka import Consumer, Producer, KafkaError
from confluent_kafka.admin import AdminClient, NewTopic

from aggregator.alarm import RESOLVED, TRIGGERED
from aggregator.config import load_config
from aggregator.scheduler import Aggregator, Report

_DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "config" / "aggregator.yml"

# Paths ending in a short extension are assets (css, js, png, ...), not pages.
_ASSET_RE = re.compile(r"\.[a-z]{1,5}$", re.IGNORECASE)

running = True


def _shutdown(sig, frame):
    global running
    print("\nShutting down aggregator...")
    running = False


def section(path: str) -> str:
    """Top-level section of a URL path: '/pages/about' -> '/pages'."""
    path = path.split("?", 1)[0].split("#", 1)[0]
    first = path.lstrip("/").split("/", 1)[0]
    return "/" + first


def observation(event: dict) -> tuple[str, str] | None:
    """Map a request event to (host, section), or None if it should be skipped."""
    host = event.get("host")
    path = event.get("path")
    if not isinstance(host, str) or not host or not isinstance(path, str):
        return None
    if _ASSET_RE.search(path.split("?", 1)[0]):
        return None
    return host, section(path)


def format_report(report: Report) -> str:
    lines = [f"Top {len(report.top)} sites"]
    for rank, entry in enumerate(report.top, 1):
        pages = "  ".join(f"{p.key}={p.value:g}" for p in entry.breakdown)
        lines.append(f"  {rank:>2}. {entry.key:<30s} hits={entry.value:<6g} {pages}")
    return "\n".join(lines)


def _ensure_topic(bootstrap_servers, topic):
    """Create the output topic if it doesn't already exist."""
    admin = AdminClient({"bootstrap.servers": bootstrap_servers})
    fs = admin.create_topics([NewTopic(topic, num_partitions=3, replication_factor=3)])
    for t, f in fs.items():
        try:
            f.result()
            print(f"Created topic '{t}'")
        except Exception as e:
            if "TOPIC_ALREADY_EXISTS" in str(e):
                print(f"Topic '{t}' already exists")
            else:
                raise


def _configure_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), None)
    if not isinstance(lvl, int):
        raise ValueError(f"Invalid --log-level '{level}'. Try INFO, WARNING, DEBUG.")
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main():
    parser = argparse.ArgumentParser(description="Traffic aggregator")
    parser.add_argument("--bootstrap-servers", default="localhost:9092")
    parser.add_argument("--input-topic", default="http-requests")
    parser.add_argument("--output-topic", default="alarms")
    parser.add_argument("--group-id", default="traffic-aggregator")
    parser.add_argument("--config", default=str(_DEFAULT_CONFIG))
    parser.add_argument("--alarm-interval", type=int, help="Alarm interval in ms")
    parser.add_argument("--reporting-interval", type=int, help="Reporting interval in ms")
    parser.add_argument("--threshold", type=float, help="Average hits per reporting interval")
    parser.add_argument("--top-k", type=int, help="Sites per report")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    _configure_logging(args.log_level)
    cfg = load_config(args.config, overrides={
        "alarm_interval_ms": args.alarm_interval,
        "reporting_interval_ms": args.reporting_interval,
        "threshold": args.threshold,
        "top_k": args.top_k,
    })

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    _ensure_topic(args.bootstrap_servers, args.output_topic)

    consumer = Consumer({
        "bootstrap.servers": args.bootstrap_servers,
        "group.id": args.group_id,
        "auto.offset.reset": "latest",
        "enable.auto.commit": True,
    })
    consumer.subscribe([args.input_topic])

    producer = Producer({"bootstrap.servers": args.bootstrap_servers})

    aggregator = Aggregator(top_k=cfg.top_k, breakdown_k=cfg.breakdown_k)

    def publish(kind):
        def handler(message, key, value):
            print(f"ALARM  {kind:<9s} {message}")
            producer.produce(
                args.output_topic,
                key=key,
                value=json.dumps({"kind": kind, "key": key, "value": value, "message": message}).encode("utf-8"),
            )
            producer.poll(0)
        return handler

    aggregator.subscribe(TRIGGERED, publish(TRIGGERED))
    aggregator.subscribe(RESOLVED, publish(RESOLVED))
    aggregator.on_report(lambda report: print(format_report(report)))

    consumed = 0
    skipped = 0

    print(f"Aggregator started  input={args.input_topic}  output={args.output_topic}  "
          f"window={cfg.window_size}  threshold={cfg.threshold}")

    aggregator.start(cfg.alarm_interval_ms, cfg.reporting_interval_ms, cfg.threshold)
    try:
        while running:
            msg = consumer.poll(1.0)
            if msg is None:
                continue
            if msg.error():
                if msg.error().code() == KafkaError._PARTITION_EOF:
                    continue
                print(f"Consumer error: {msg.error()}", file=sys.stderr)
                continue

            try:
                event = json.loads(msg.value().decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError):
                skipped += 1
                continue
            consumed += 1

            obs = observation(event) if isinstance(event, dict) else None
            if obs is None:
                skipped += 1
                continue
            host, page = obs
            aggregator.feed(host, 1, page)

            if consumed % 5000 == 0:
                print(f"  ... {consumed} requests consumed, {skipped} skipped")
    finally:
        aggregator.stop()
        producer.flush()
        consumer.close()
        print(f"Done. {consumed} requests consumed, {skipped} skipped.")


if __name__ == "__main__":
    main()
