#!/usr/bin/env python3
import argparse
import sys
from pathlib import Path

from discord_retention_bot.config import find_config_problems, read_config_file


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate retention configuration JSON")
    parser.add_argument("config_path", help="Path to configuration.json")
    args = parser.parse_args()

    try:
        config = read_config_file(Path(args.config_path))
    except Exception as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1

    problems = find_config_problems(config)
    if problems:
        print("Configuration validation failed:")
        for problem in problems:
            print(f"- {problem}")
        return 2
    print("Configuration validation passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
