"""
Seed the default Starter, Growth and Scale plans.

Usage:
    python -m webaudit.scripts.seed_plans

Idempotent: existing plan rows (including admin edits) are left alone.
"""
from webaudit.core.config import settings
from webaudit.core.database import create_all_tables
from webaudit.core.logging import configure_logging
from webaudit.features.plans.service import seed_plans


def main() -> int:
    create_all_tables()
    inserted = seed_plans()
    if inserted:
        print(f"Seeded plans: {', '.join(inserted)}")
    else:
        print("All default plans already present")
    return 0


if __name__ == "__main__":
    configure_logging(settings.ENV)
    raise SystemExit(main())
