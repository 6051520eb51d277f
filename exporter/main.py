"""Prometheus metrics exporter — consumes request and alarm topics.

Subscribes to http-requests and alarms, updating Prometheus counters and
gauges as messages arrive.  Grafana reads from Prometheus to chart traffic
per site next to alarm transitions.

Usage:
    python -m exporter.main
    python -m exporter.main --bootstrap-servers kafka-1:29092 --port 9090
"""

import argparse
import json
import signal
import sys
import time

from confluent_kafka import Consumer, KafkaError
from prometheus_client import Counter, Gauge, Histogram, start_http_server

# ---------------------------------------------------------------------------
# Request metrics
# ---------------------------------------------------------------------------
# Each metric registers itself in the global REGISTRY on construction;
# start_http_server() serves whatever is registered there.
requests_total = Counter(
    "agg_requests_total",
    "Total HTTP requests observed",
    ["host"],
)
responses_total = Counter(
    "agg_responses_total",
    "Requests by status class",
    ["status_class"],
)
response_bytes = Histogram(
    "agg_response_bytes",
    "Response size distribution",
    buckets=[500, 1000, 5000, 10000, 25000, 50000, 100000],
)

# ---------------------------------------------------------------------------
# Alarm metrics
# ---------------------------------------------------------------------------
alarm_transitions_total = Counter(
    "agg_alarm_transitions_total",
    "Alarm state transitions",
    ["kind", "host"],
)
active_alarms = Gauge(
    "agg_active_alarms",
    "Hosts currently in a triggered alarm state",
)
alarm_value = Gauge(
    "agg_alarm_value",
    "Smoothed hits reported with the latest transition for a host",
    ["host"],
)

# ---------------------------------------------------------------------------
# Exporter health
# ---------------------------------------------------------------------------
events_per_second = Gauge(
    "agg_events_per_second",
    "Current message processing rate",
)
export_errors_total = Counter(
    "agg_export_errors_total",
    "JSON parse or Kafka consumer errors in the exporter",
)

running = True


def _shutdown(sig, frame):
    global running
    print("\nShutting down exporter...")
    running = False


# ---------------------------------------------------------------------------
# Metric updaters
# ---------------------------------------------------------------------------

def _process_request(event: dict):
    """Update Prometheus metrics for a raw request event."""
    host = event.get("host", "unknown")
    requests_total.labels(host=host).inc()

    status = event.get("status_code")
    if isinstance(status, int):
        responses_total.labels(status_class=f"{status // 100}xx").inc()

    size = event.get("bytes")
    if isinstance(size, (int, float)):
        response_bytes.observe(size)


class AlarmTracker:
    """Keeps the active-alarm gauge in step with triggered/resolved messages.

    Messages may be replayed or arrive for hosts we never saw trigger
    (exporter started mid-alarm), so the gauge follows a set of hosts rather
    than blind inc/dec.
    """

    def __init__(self):
        self.active: set[str] = set()

    def process(self, alarm: dict):
        kind = alarm.get("kind", "unknown")
        host = alarm.get("key", "unknown")

        alarm_transitions_total.labels(kind=kind, host=host).inc()
        value = alarm.get("value")
        if isinstance(value, (int, float)):
            alarm_value.labels(host=host).set(value)

        if kind == "triggered":
            self.active.add(host)
        elif kind == "resolved":
            self.active.discard(host)
        active_alarms.set(len(self.active))


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(description="Prometheus metrics exporter")
    parser.add_argument("--bootstrap-servers", default="localhost:9092")
    parser.add_argument("--requests-topic", default="http-requests")
    parser.add_argument("--alarms-topic", default="alarms")
    parser.add_argument(
        "--port", type=int, default=9090, help="Prometheus metrics HTTP port",
    )
    args = parser.parse_args()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    start_http_server(args.port)
    print(f"Prometheus metrics server started on :{args.port}")

    consumer = Consumer({
        "bootstrap.servers": args.bootstrap_servers,
        "group.id": "metrics-exporter",
        "auto.offset.reset": "latest",
        "enable.auto.commit": True,
    })
    consumer.subscribe([args.requests_topic, args.alarms_topic])

    alarms = AlarmTracker()
    count = 0
    window_start = time.time()
    window_count = 0

    print(f"Exporter consuming from {args.requests_topic} + {args.alarms_topic} ...")

    try:
        while running:
            msg = consumer.poll(1.0)
            if msg is None:
                continue
            if msg.error():
                if msg.error().code() == KafkaError._PARTITION_EOF:
                    continue
                export_errors_total.inc()
                print(f"Consumer error: {msg.error()}", file=sys.stderr)
                continue

            try:
                data = json.loads(msg.value().decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError):
                export_errors_total.inc()
                continue
            if not isinstance(data, dict):
                export_errors_total.inc()
                continue

            topic = msg.topic()
            if topic == args.requests_topic:
                _process_request(data)
            elif topic == args.alarms_topic:
                alarms.process(data)

            count += 1
            window_count += 1

            # Update EPS gauge roughly every second
            now = time.time()
            elapsed = now - window_start
            if elapsed >= 1.0:
                events_per_second.set(window_count / elapsed)
                window_start = now
                window_count = 0

            if count % 5000 == 0:
                print(f"  ... {count} messages exported to metrics")
    finally:
        consumer.close()
        print(f"Exporter done. {count} messages processed.")


if __name__ == "__main__":
    main()
