#!/usr/bin/env python3
"""
Create payment tables (user_payments, driver_payments, payment_references) if missing.
Run from the project root: python -m scripts.init_db
"""
import logging

from app.core.logging import configure_logging
from app.db.session import init_db


def main():
    configure_logging()
    init_db()
    logging.getLogger(__name__).info("payment_tables_ready")


if __name__ == "__main__":
    main()
