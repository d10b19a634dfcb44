"""Configuration validation tooling for steptrader.

Usage:
    python -m tools.config_check                      # validate config/app.yaml
    python -m tools.config_check a.yaml b.yaml
    python -m tools.config_check --files a.yaml b.yaml
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from tools.config_validator import validate_config_file

DEFAULT_FILES = ["config/app.yaml"]


def check_file(path: Path) -> List[str]:
    """Return printable result lines; the first line starts with ✔ or ✖."""
    errors = validate_config_file(str(path))
    if not errors:
        return [f"✔ {path}: OK"]
    return [f"✖ {path}: {len(errors)} error(s)"] + [f"    - {err}" for err in errors]


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Validate steptrader configuration files")
    parser.add_argument("paths", nargs="*", help="Config files to validate")
    parser.add_argument("--files", nargs="*", help="Specific config files to validate")
    args = parser.parse_args(list(argv) if argv is not None else None)

    targets = list(args.paths) + list(args.files or [])
    if not targets:
        targets = DEFAULT_FILES

    exit_code = 0
    for target in targets:
        messages = check_file(Path(target))
        for line in messages:
            print(line)
        if messages[0].startswith("✖"):
            exit_code = 1

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
