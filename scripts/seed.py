"""Seed reference data and the demo accounts.

Usage: python scripts/seed.py [--password PASSWORD]
"""

import argparse

from app import app, bootstrap_db
from bbd_app.seed import DEMO_PASSWORD, seed_demo_users


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--password", default=DEMO_PASSWORD)
    args = parser.parse_args()

    with app.app_context():
        bootstrap_db()
        created = seed_demo_users(args.password)

    print(f"Seeded reference data; created {len(created)} demo user(s).")
    for email in created:
        print(f" - {email}")


if __name__ == "__main__":
    main()
