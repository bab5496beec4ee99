#!/usr/bin/env python3
"""
Database Initialization Script
Creates every table and index, optionally adding the sample books
"""
import argparse
import os
import sys
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import catalog
import db
from utils import logger


def main():
    parser = argparse.ArgumentParser(description="Initialize the Book Bazaar database")
    parser.add_argument("--seed", action="store_true", help="insert the sample books into an empty catalogue")
    args = parser.parse_args()

    db.init_db()
    if args.seed:
        added = catalog.seed_sample_books()
        logger.info(f"Seeded {added} sample books")

    backend = "PostgreSQL" if db.USE_POSTGRES else f"SQLite ({db.DB_FILE})"
    print(f"Database ready on {backend}")
    db.close_database()


if __name__ == "__main__":
    main()
