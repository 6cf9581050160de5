#!/usr/bin/env python3
"""
Generate a SQLite warehouse holding an ``articles`` table for the example.

Creates warehouse.db next to this script with a configurable row count
(default 500) containing:
- id: Zero-padded article identifier
- body: A few sentences of procedurally generated text
- published: ISO 8601 timestamp incrementing by minutes

Usage:
    python generate_data.py              # 500 rows
    python generate_data.py 5000         # 5,000 rows
"""

import random
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

from sqlalchemy import Column, MetaData, Table, Text, create_engine, insert

TOPICS = ["rivers", "harbours", "bridges", "canals", "reservoirs"]
VERBS = ["reopened", "flooded", "was restored", "was surveyed", "closed for repairs"]


def generate_data(num_rows: int = 500, output_path: Path | None = None) -> None:
    """Create (or replace) the articles table."""
    if output_path is None:
        output_path = Path(__file__).parent / "warehouse.db"

    base_timestamp = datetime(2024, 1, 1, 0, 0, 0, tzinfo=UTC)
    articles = Table(
        "articles",
        MetaData(),
        Column("id", Text, primary_key=True),
        Column("body", Text, nullable=False),
        Column("published", Text, nullable=False),
    )

    print(f"Generating {num_rows:,} articles in {output_path}...")  # noqa: T201

    engine = create_engine(f"sqlite:///{output_path}")
    with engine.begin() as conn:
        articles.drop(conn, checkfirst=True)
        articles.create(conn)
        rows = [
            {
                "id": f"{i:06d}",
                "body": " ".join(
                    f"The {random.choice(TOPICS)} district {random.choice(VERBS)} on day {random.randint(1, 365)}."
                    for _ in range(random.randint(2, 5))
                ),
                "published": (base_timestamp + timedelta(minutes=i)).isoformat(),
            }
            for i in range(1, num_rows + 1)
        ]
        conn.execute(insert(articles), rows)
    engine.dispose()

    print(f"Generated {num_rows:,} articles successfully")  # noqa: T201


if __name__ == "__main__":
    num_rows = int(sys.argv[1]) if len(sys.argv) > 1 else 500

    if num_rows < 1 or num_rows > 1_000_000:
        print("Error: Row count must be between 1 and 1,000,000", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    generate_data(num_rows)
