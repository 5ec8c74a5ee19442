"""Synthetic ticket-booking logs for demos, load and local testing.

Usage:
    python -m scripts.generate_logs --count 20 --preview
    python -m scripts.generate_logs --incident --post http://localhost:5000
"""

from __future__ import annotations

import json
import random
from datetime import datetime, timedelta

import click
import httpx
from rich.console import Console
from rich.table import Table

from schemas.events import LogEvent, utcnow

_EVENTS = [
    {"id": 1, "name": "Coldplay Concert", "price": 2500},
    {"id": 2, "name": "Taylor Swift Era Tour", "price": 3500},
    {"id": 3, "name": "Marvel Movie Premiere", "price": 800},
    {"id": 4, "name": "Cricket World Cup Final", "price": 5000},
    {"id": 5, "name": "Stand-up Comedy Night", "price": 600},
]
_CITIES = ["Mumbai", "Delhi", "Bangalore", "Chennai", "Kolkata", "Hyderabad"]
_PAYMENT_METHODS = ["credit_card", "debit_card", "upi", "netbanking", "wallet"]
_PAYMENT_ERRORS = [
    ("INSUFFICIENT_FUNDS", "Insufficient balance in account"),
    ("CARD_DECLINED", "Card declined by bank"),
    ("PAYMENT_GATEWAY_TIMEOUT", "Payment gateway timeout"),
    ("INVALID_CVV", "Invalid CVV entered"),
]
_SERVER_ERRORS = [
    ("ERROR", "Database connection pool exhausted", "DB_POOL_EXHAUSTED"),
    ("ERROR", "External payment API down", "PAYMENT_API_DOWN"),
    ("CRITICAL", "High memory usage detected", "MEMORY_CRITICAL"),
    ("ERROR", "Redis cache miss - performance degraded", "CACHE_MISS"),
]


class _Session:
    """One simulated visitor; every log it emits shares user and session ids."""

    def __init__(self, now: datetime, seconds_ago: int = 0) -> None:
        self.user_id = f"user_{random.randint(1, 9999)}"
        self.session_id = f"session_{int(now.timestamp() * 1000)}_{random.randint(0, 999)}"
        self.city = random.choice(_CITIES)
        self.clock = now - timedelta(seconds=seconds_ago)

    def log(self, level: str, message: str, **fields) -> LogEvent:
        self.clock += timedelta(seconds=random.randint(2, 40))
        details = fields.pop("details", {})
        return LogEvent(
            timestamp=self.clock,
            level=level,
            message=message,
            user_id=self.user_id,
            session_id=self.session_id,
            request_id=f"req_{int(self.clock.timestamp() * 1000)}_{random.randint(0, 999)}",
            city=self.city,
            details=details,
            **fields,
        )


# ---------------------------------------------------------------------------
# Single activities
# ---------------------------------------------------------------------------


def _homepage(s: _Session) -> list[LogEvent]:
    return [s.log("INFO", "User visited homepage", endpoint="GET /", response_time=random.randint(100, 600))]


def _browse(s: _Session) -> list[LogEvent]:
    event = random.choice(_EVENTS)
    return [
        s.log(
            "INFO",
            "User browsed event details",
            endpoint=f"GET /events/{event['id']}",
            response_time=random.randint(50, 350),
            details={"eventName": event["name"], "eventPrice": event["price"]},
        )
    ]


def _add_to_cart(s: _Session) -> list[LogEvent]:
    event = random.choice(_EVENTS)
    if random.random() > 0.3:
        return [s.log("INFO", "Ticket added to cart successfully", endpoint="POST /cart/add")]
    return [
        s.log(
            "ERROR",
            "Failed to add ticket to cart",
            endpoint="POST /cart/add",
            error_code="INSUFFICIENT_INVENTORY",
            error_message="Not enough tickets available",
            details={"eventName": event["name"]},
        )
    ]


def _payment(s: _Session, fail_rate: float = 0.4) -> list[LogEvent]:
    event = random.choice(_EVENTS)
    method = random.choice(_PAYMENT_METHODS)
    if random.random() > fail_rate:
        return [
            s.log(
                "INFO",
                "Payment processed successfully",
                endpoint="POST /payment/process",
                response_time=random.randint(500, 3500),
                details={"paymentMethod": method, "amount": event["price"]},
            )
        ]
    code, message = random.choice(_PAYMENT_ERRORS)
    return [
        s.log(
            "ERROR",
            "Payment failed",
            endpoint="POST /payment/process",
            error_code=code,
            error_message=message,
            details={"paymentMethod": method, "amount": event["price"], "retryAttempt": random.randint(1, 3)},
        )
    ]


def _login(s: _Session) -> list[LogEvent]:
    if random.random() > 0.2:
        return [s.log("INFO", "User login successful", endpoint="POST /auth/login")]
    reason = random.choice(["invalid_credentials", "account_locked", "too_many_attempts"])
    return [s.log("WARN", "Login attempt failed", endpoint="POST /auth/login", details={"reason": reason})]


def _search_miss(s: _Session) -> list[LogEvent]:
    query = random.choice(["Bollywood concert", "Football match", "Theater show"])
    return [s.log("WARN", "Search returned no results", endpoint="GET /search", details={"searchQuery": query})]


def _slow_response(s: _Session) -> list[LogEvent]:
    return [
        s.log(
            "WARN",
            "Slow response time detected",
            endpoint=f"GET /events/{random.randint(1, 5)}",
            response_time=random.randint(2000, 5000),
            details={"threshold": "1000ms"},
        )
    ]


def _server_error(s: _Session) -> list[LogEvent]:
    level, message, code = random.choice(_SERVER_ERRORS)
    return [
        s.log(
            level,
            message,
            error_code=code,
            details={"systemLoad": f"{random.randint(60, 99)}%"},
        )
    ]


_ACTIVITIES = [
    (_homepage, 0.20),
    (_browse, 0.25),
    (_add_to_cart, 0.15),
    (_payment, 0.15),
    (_login, 0.10),
    (_search_miss, 0.05),
    (_slow_response, 0.05),
    (_server_error, 0.05),
]


# ---------------------------------------------------------------------------
# Correlated scenarios
# ---------------------------------------------------------------------------


def _scenario_checkout_journey(now: datetime) -> list[LogEvent]:
    """Login -> browse -> cart -> payment, all in one session."""
    s = _Session(now, seconds_ago=240)
    return _login(s) + _browse(s) + _add_to_cart(s) + _payment(s)


def _scenario_payment_outage(now: datetime) -> list[LogEvent]:
    """Gateway down: many users fail checkout inside a few minutes."""
    logs: list[LogEvent] = []
    for _ in range(random.randint(6, 10)):
        s = _Session(now, seconds_ago=random.randint(60, 200))
        logs += _browse(s)
        logs.append(
            s.log(
                "CRITICAL",
                "Payment gateway unreachable",
                endpoint="POST /payment/process",
                error_code="PAYMENT_GATEWAY_DOWN",
                error_message="Upstream gateway returned 503",
            )
        )
    return logs


def _scenario_database_degradation(now: datetime) -> list[LogEvent]:
    """Slow queries turning into pool exhaustion."""
    s = _Session(now, seconds_ago=180)
    return (
        _slow_response(s)
        + _slow_response(s)
        + [
            s.log(
                "ERROR",
                "Database connection pool exhausted",
                endpoint="GET /events",
                error_code="DB_POOL_EXHAUSTED",
                error_message="Timeout acquiring connection after 5000ms",
            ),
            s.log(
                "CRITICAL",
                "Database unavailable",
                endpoint="GET /events",
                error_code="DATABASE_UNAVAILABLE",
            ),
        ]
    )


_INCIDENT_SCENARIOS = [_scenario_payment_outage, _scenario_database_degradation]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def generate_logs(
    count: int = 20,
    *,
    incident_mode: bool = False,
    scenario_probability: float = 0.5,
    now: datetime | None = None,
) -> list[LogEvent]:
    """Generate a batch of realistic booking-platform logs.

    Args:
        count: Number of logs to return.
        incident_mode: Always include an outage scenario.
        scenario_probability: Chance that a correlated scenario is mixed in
            when not in incident mode.
        now: Reference time; logs are spread over the few minutes before it.
    """
    now = now or utcnow()
    logs: list[LogEvent] = []

    if incident_mode:
        logs += random.choice(_INCIDENT_SCENARIOS)(now)
    elif random.random() < scenario_probability:
        logs += _scenario_checkout_journey(now)

    activities, weights = zip(*_ACTIVITIES)
    while len(logs) < count:
        activity = random.choices(activities, weights=weights, k=1)[0]
        logs += activity(_Session(now, seconds_ago=random.randint(0, 280)))

    logs = logs[:count]
    logs.sort(key=lambda e: e.timestamp)
    return logs


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _preview(logs: list[LogEvent]) -> None:
    console = Console()
    table = Table(title=f"Generated logs ({len(logs)})", show_lines=False)
    table.add_column("#", style="dim", width=3)
    table.add_column("Time", style="dim")
    table.add_column("Level")
    table.add_column("Endpoint", style="cyan")
    table.add_column("Code", style="magenta")
    table.add_column("Message", max_width=50)
    colors = {"CRITICAL": "bold white on red", "ERROR": "bold red", "WARN": "yellow", "INFO": "green"}
    for i, e in enumerate(logs, 1):
        color = colors.get(e.level, "white")
        table.add_row(
            str(i),
            e.timestamp.strftime("%H:%M:%S"),
            f"[{color}]{e.level}[/{color}]",
            e.endpoint or "-",
            e.error_code or "-",
            e.message,
        )
    console.print(table)


@click.command("generate-logs")
@click.option("--count", "-n", default=20, help="Number of logs.")
@click.option("--incident", is_flag=True, help="Force an outage scenario.")
@click.option("--seed", type=int, default=None, help="Random seed for reproducibility.")
@click.option("--preview", is_flag=True, help="Pretty-print to the terminal.")
@click.option("--post", "post_url", default=None, help="Service base URL to POST the batch to.")
def main(count: int, incident: bool, seed: int | None, preview: bool, post_url: str | None) -> None:
    if seed is not None:
        random.seed(seed)
    logs = generate_logs(count, incident_mode=incident)

    if preview:
        _preview(logs)
    elif not post_url:
        payload = [e.model_dump(mode="json", by_alias=True) for e in logs]
        click.echo(json.dumps(payload, indent=2))

    if post_url:
        payload = {"logs": [e.model_dump(mode="json", by_alias=True) for e in logs]}
        try:
            resp = httpx.post(f"{post_url.rstrip('/')}/api/logs/batch", json=payload, timeout=10)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise click.ClickException(f"POST failed: {exc}") from exc
        click.echo(resp.json().get("message", "sent"))


if __name__ == "__main__":
    main()
