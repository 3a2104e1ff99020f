"""Entry point for running the gallery harvester package."""

import sys
import traceback

from .cli import main as run_cli


def _launch():
    try:
        return run_cli()
    except Exception as exc:
        print("\n" + "=" * 60)
        print("ERROR: Gallery Harvester stopped unexpectedly")
        print("=" * 60)
        print(f"\n{type(exc).__name__}: {exc}\n")
        print("Full error details:")
        traceback.print_exc()
        print("\n" + "=" * 60)
        return 1


if __name__ == "__main__":
    sys.exit(_launch())
