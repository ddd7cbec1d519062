from __future__ import annotations

import argparse
import asyncio
import sys

from privacycore.core.logging import configure_logging
from privacycore.services.context import build_privacy_core


async def seed_compliance(*, packs_only: bool = False) -> int:
    # Packs seed only into an empty catalog; configs fill in missing regulations.
    core = build_privacy_core()
    packs = (await core.programs.seed_default_packs()).unwrap()
    if packs == 0:
        print("Compliance packs already seeded; skipping.")
    else:
        print(f"Seeded {packs} compliance packs.")
    if not packs_only:
        configs = (await core.tenant_settings.seed_compliance_configs()).unwrap()
        print(f"Seeded {configs} regulation configs.")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed default compliance packs and regulation configs")
    parser.add_argument("--packs-only", action="store_true", help="skip regulation config seeding")
    args = parser.parse_args()

    configure_logging()
    try:
        return asyncio.run(seed_compliance(packs_only=args.packs_only))
    except Exception as exc:  # noqa: BLE001 - surface seed failures to the operator
        print(f"seed_compliance_packs failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
