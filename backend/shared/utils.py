import time
from datetime import datetime


def epoch_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def print_summary(title: str, stats: dict[str, int]) -> None:
    """Print processing summary."""
    print(f"\n{'=' * 60}")
    print(f"[{datetime.now()}] {title}")
    print(f"{'=' * 60}")
    width = max((len(key) for key in stats), default=0) + 1
    for key, value in stats.items():
        label = key.replace("_", " ").capitalize() + ":"
        print(f"{label:<{width + 1}} {value}")
    print(f"{'=' * 60}\n")
