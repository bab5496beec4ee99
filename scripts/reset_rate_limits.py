#!/usr/bin/env python3
"""
Rate Limit Reset Script
This script allows you to reset rate limits for troubleshooting purposes.
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import db
from utils import logger


def reset_all_rate_limits():
    """Reset all rate limits in the database"""
    removed = db.execute("DELETE FROM rate_limits")
    logger.info(f"All rate limits have been reset ({removed} rows)")
    return removed


def reset_caller_rate_limits(identifier, endpoint=None):
    """Reset rate limits for one caller, e.g. 'user:12' or 'ip:203.0.113.5'"""
    removed = db.reset_rate_limit(identifier, endpoint)
    logger.info(f"Rate limits reset for {identifier}: {removed} rows")
    return removed


def show_rate_limit_status():
    """Show current rate limit status"""
    rows = db.query_all(
        "SELECT identifier, endpoint, request_count, window_start FROM rate_limits ORDER BY window_start DESC"
    )
    if not rows:
        print("No active rate limits found.")
        return

    print("Current Rate Limits:")
    print("-" * 80)
    print(f"{'Caller':<30} {'Endpoint':<20} {'Count':<8} {'Window Start':<20}")
    print("-" * 80)
    for row in rows:
        print(f"{row['identifier']:<30} {row['endpoint']:<20} {row['request_count']:<8} {str(row['window_start']):<20}")


def main():
    """Main function with interactive menu"""
    print("Rate Limit Management Tool")
    print("=" * 40)

    while True:
        print("\nOptions:")
        print("1. Show current rate limits")
        print("2. Reset rate limits for a caller")
        print("3. Reset ALL rate limits")
        print("4. Exit")

        choice = input("\nEnter your choice (1-4): ").strip()

        if choice == "1":
            show_rate_limit_status()

        elif choice == "2":
            identifier = input("Enter caller (user:<id> or ip:<address>): ").strip()
            if identifier:
                reset_caller_rate_limits(identifier)
            else:
                print("Caller cannot be empty")

        elif choice == "3":
            confirm = input("Are you sure you want to reset ALL rate limits? (yes/no): ").strip().lower()
            if confirm == "yes":
                reset_all_rate_limits()
            else:
                print("Operation cancelled")

        elif choice == "4":
            print("Goodbye!")
            break

        else:
            print("Invalid choice. Please enter 1-4.")


if __name__ == "__main__":
    main()
