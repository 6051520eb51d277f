"""HTTP request traffic generator.

Simulates request traffic across a pool of sites.  Steady sites send at a
roughly constant rate; bursty sites alternate between quiet stretches and
spikes large enough to cross the aggregator's alarm threshold, then go
silent, which exercises both the resolve-below-threshold and the
resolve-on-silence paths.

Usage:
    python producer.py
    python producer.py --steady 20 --bursty 3 --burst-seconds 90
    python producer.py --eps 100 --topic http-requests
"""

import argparse
import json
import random
import signal
import time
from dataclasses import dataclass

from confluent_kafka import Producer
from confluent_kafka.admin import AdminClient, NewTopic

SECTIONS = ["/", "/api", "/blog", "/docs", "/pricing", "/login", "/search", "/static"]
ASSETS = ["app.js", "style.css", "logo.png", "favicon.ico"]
METHODS = ["GET"] * 8 + ["POST", "PUT"]
STATUS_CODES = [200] * 18 + [301, 404, 500]

running = True


def _shutdown(sig, frame):
    global running
    print("\nShutting down generator...")
    running = False


signal.signal(signal.SIGINT, _shutdown)   # Ctrl+C (local dev)
signal.signal(signal.SIGTERM, _shutdown)  # docker stop / k8s pod termination


# ---------------------------------------------------------------------------
# Site profiles
# ---------------------------------------------------------------------------

@dataclass
class Site:
    host: str
    role: str  # steady | bursty
    weight: float
    asset_rate: float       # fraction of requests for static assets
    burst_multiplier: float = 1.0
    burst_period: float = 0.0  # seconds per quiet+burst cycle; 0 = never bursts

    def weight_at(self, now: float, burst_seconds: float) -> float:
        if self.role != "bursty" or self.burst_period <= 0:
            return self.weight
        phase = now % self.burst_period
        if phase < burst_seconds:
            return self.weight * self.burst_multiplier
        # Silent for the last stretch so alarms resolve on silence.
        if phase > self.burst_period - burst_seconds / 2:
            return 0.0
        return self.weight


def _create_sites(n_steady, n_bursty):
    """Build the site pool. Each site gets a stable host name."""
    sites = []
    tiers = {"small": (0.5, 2), "medium": (2, 6), "large": (6, 15)}
    tier_names = list(tiers.keys())

    for i in range(1, n_steady + 1):
        tier = random.choice(tier_names)
        sites.append(Site(
            host=f"site{i:02d}.example.com", role="steady",
            weight=random.uniform(*tiers[tier]),
            asset_rate=random.uniform(0.2, 0.5),
        ))

    for i in range(1, n_bursty + 1):
        sites.append(Site(
            host=f"burst{i:02d}.example.net", role="bursty",
            weight=random.uniform(1, 3),
            asset_rate=random.uniform(0.1, 0.3),
            burst_multiplier=random.uniform(15, 30),
            burst_period=random.uniform(300, 600),
        ))

    return sites


# ---------------------------------------------------------------------------
# Event generation
# ---------------------------------------------------------------------------

def _make_event(site: Site) -> dict:
    """Generate a single request event for a site."""
    section = random.choice(SECTIONS)
    if random.random() < site.asset_rate:
        path = f"{section.rstrip('/')}/{random.choice(ASSETS)}"
    else:
        path = f"{section.rstrip('/')}/{random.randint(1, 50)}"

    return {
        "event_type": "http_request",
        "timestamp": time.time(),
        "host": site.host,
        "path": path,
        "method": random.choice(METHODS),
        "status_code": random.choice(STATUS_CODES),
        "src": f"10.0.{random.randint(0, 255)}.{random.randint(1, 254)}",
        "bytes": random.randint(200, 50_000),
    }


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

def _ensure_topics(bootstrap_servers, topics):
    """Create Kafka topics if they don't already exist."""
    admin = AdminClient({"bootstrap.servers": bootstrap_servers})
    new_topics = [NewTopic(t, num_partitions=3, replication_factor=3) for t in topics]
    fs = admin.create_topics(new_topics)
    for topic, f in fs.items():
        try:
            f.result()
            print(f"Created topic '{topic}'")
        except Exception as e:
            if "TOPIC_ALREADY_EXISTS" in str(e):
                print(f"Topic '{topic}' already exists")
            else:
                raise


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(description="HTTP request traffic generator")
    parser.add_argument("--bootstrap-servers", default="localhost:9092")
    parser.add_argument("--topic", default="http-requests")
    parser.add_argument("--steady", type=int, default=12)
    parser.add_argument("--bursty", type=int, default=2)
    parser.add_argument("--burst-seconds", type=float, default=60,
                        help="Length of each burst for bursty sites")
    parser.add_argument("--eps", type=float, default=50, help="Target events/sec")
    args = parser.parse_args()

    sites = _create_sites(args.steady, args.bursty)

    print(f"Generating to topic '{args.topic}' at ~{args.eps} events/sec")
    print(f"Sites: {len(sites)} total")
    for s in sites:
        print(f"  {s.host:<24s} {s.role:<7s} weight={s.weight:>5.1f}")

    _ensure_topics(args.bootstrap_servers, [args.topic])

    producer = Producer({
        "bootstrap.servers": args.bootstrap_servers,
        "acks": "all",
        "client.id": "http-traffic-generator",
    })

    count = 0
    delay = 1.0 / args.eps

    while running:
        now = time.time()
        weights = [s.weight_at(now, args.burst_seconds) for s in sites]
        if not any(weights):
            time.sleep(delay)
            continue
        site = random.choices(sites, weights=weights, k=1)[0]
        event = _make_event(site)

        producer.produce(
            topic=args.topic,
            key=event["host"].encode(),
            value=json.dumps(event),
        )
        producer.poll(0)

        count += 1
        if count % 500 == 0:
            print(f"  ... {count} events produced")

        time.sleep(delay)

    producer.flush()
    print(f"Done. {count} events produced.")


if __name__ == "__main__":
    main()
