#!/usr/bin/env python3
"""
Publish problems from a JSON file into the record store.

Usage:
    python scripts/seed_problems.py demo
    python scripts/seed_problems.py --file path/to/problems.json

Each entry is a problem document: id, title, prompt, sampleTables,
expectedOutput {type, value}. Existing problems with the same id are replaced.
"""

import argparse
import asyncio
import json
import os
import sys
from typing import List

from pydantic import ValidationError

# Add the project root to the Python path to allow running from a checkout
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sqlsandbox.config import Config, configure_logging
from sqlsandbox.database import build_engine, build_session_factory, create_tables
from sqlsandbox.repository import ProblemRepository
from sqlsandbox.schemas import Problem


def load_problems(file_path: str) -> List[Problem]:
    """Parse and validate every problem document in `file_path`"""
    with open(file_path, 'r') as f:
        documents = json.load(f)

    if not isinstance(documents, list):
        raise ValueError(f"{file_path} must contain a JSON array of problems")
    return [Problem.model_validate(document) for document in documents]


async def seed_problems(file_path: str) -> int:
    engine = build_engine()
    try:
        create_tables(engine)
        repository = ProblemRepository(build_session_factory(engine))
        problems = load_problems(file_path)
        for problem in problems:
            await repository.save(problem)
        return len(problems)
    finally:
        engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the record store with a problem set.")
    parser.add_argument(
        "env",
        nargs="?",
        default="demo",
        help="Problem set under scripts/data/<env>_problems.json (default: demo)"
    )
    parser.add_argument("--file", help="Explicit path to a problems JSON file")
    args = parser.parse_args()

    configure_logging()
    file_path = args.file or os.path.join(os.path.dirname(__file__), 'data', f'{args.env}_problems.json')
    if not os.path.exists(file_path):
        print(f"❌ Error: Data file not found at {file_path}")
        return 1
    if not Config.DATABASE_URL:
        print("❌ Error: DATABASE_URL environment variable is required")
        return 1

    print(f"Seeding problems from {file_path}...")
    try:
        count = asyncio.run(seed_problems(file_path))
    except (ValueError, ValidationError) as e:
        print(f"❌ Error: invalid problem file: {e}")
        return 1

    print(f"✅ Successfully seeded {count} problems")
    return 0


if __name__ == "__main__":
    sys.exit(main())
