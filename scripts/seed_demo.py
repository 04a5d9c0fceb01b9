#!/usr/bin/env python3
"""Seed demo data: a handful of observations that form and then merge clusters.

Usage:
    python scripts/seed_demo.py          # uses DATABASE_URL from env / .env
    DATABASE_URL=... python scripts/seed_demo.py
"""
from __future__ import annotations

import sys

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

# Ensure project root is on sys.path
sys.path.insert(0, ".")

from identity_api.core.settings import get_settings
from identity_api.db.base import Base
from identity_api.identity.resolver import IdentityResolver

# (email, phone_number) observations, submitted in order
DEMO_OBSERVATIONS: list[tuple[str | None, str | None]] = [
    ("lorraine@hillvalley.edu", "123456"),
    ("mcfly@hillvalley.edu", "123456"),
    ("george@hillvalley.edu", "919191"),
    ("biffsucks@hillvalley.edu", "717171"),
    ("george@hillvalley.edu", "717171"),
    (None, "555010"),
    ("doc@hillvalley.edu", "555010"),
]


def seed(session: Session) -> None:
    """Run every demo observation through the resolver and print the result."""
    resolver = IdentityResolver(session, actor="seed_demo")
    for email, phone_number in DEMO_OBSERVATIONS:
        projection = resolver.resolve(email, phone_number)
        print(f"  ({email}, {phone_number}) -> {projection.to_payload()['contact']}")


def main() -> None:
    settings = get_settings()
    engine = create_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)

    with Session(engine) as session:
        print("Seeding demo contacts...")
        seed(session)

    print("Done.")


if __name__ == "__main__":
    main()
