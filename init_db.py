#!/usr/bin/env python3
"""
Initialize the sandbox engine's record-store tables
"""
from sqlsandbox.config import Config
from sqlsandbox.database import build_engine, create_tables

if __name__ == "__main__":
    Config.validate_config()
    Config.print_config_summary()
    print("Initializing sandbox record-store tables...")
    engine = build_engine()
    create_tables(engine)
    engine.dispose()
    print("Database initialization completed successfully!")
