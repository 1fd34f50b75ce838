"""CI gate: the analytics schema migrations form one linear chain.

Every new migration must set down_revision to the current head. A second
root or a second head means two migrations were written against the same
parent and `alembic upgrade head` would be ambiguous.

Usage:
  python .github/scripts/ci_alembic_heads_check.py
"""
from __future__ import annotations

import sys
from pathlib import Path

# Alembic needs the api directory on sys.path and the alembic.ini location.
api_root = Path(__file__).resolve().parents[2] / "apps" / "api"
sys.path.insert(0, str(api_root))

from alembic.config import Config
from alembic.script import ScriptDirectory

EXPECTED_ROOT = "analytics_001"


def main() -> int:
    cfg = Config(str(api_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(api_root / "alembic"))

    script = ScriptDirectory.from_config(cfg)
    heads = script.get_heads()
    revisions = list(script.walk_revisions())
    roots = [r.revision for r in revisions if r.down_revision is None]

    if len(heads) != 1:
        print("MIGRATION HEAD CHECK FAILED")
        print(f"  Expected one head, found {len(heads)}: {sorted(heads)}")
        print("  Fix: chain the newer migration off the other head.")
        return 1

    if roots != [EXPECTED_ROOT]:
        print("MIGRATION ROOT CHECK FAILED")
        print(f"  Expected root {EXPECTED_ROOT}, found: {sorted(roots)}")
        print("  Fix: new migrations must not use down_revision = None.")
        return 1

    print(f"Migration integrity check: OK (head {heads[0]}, {len(revisions)} revisions)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
