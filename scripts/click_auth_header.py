#!/usr/bin/env python3
"""Print a Click Auth header built from the current environment.

Useful for checking merchant credentials by hand with curl.
"""

from paybridge.core.config import get_settings
from paybridge.services.signature import build_auth_header


def main() -> int:
    settings = get_settings()
    print(f"Auth: {build_auth_header(settings.click_merchant_user_id, settings.click_secret)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
