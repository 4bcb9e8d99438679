import logging
import os
import sys
from pathlib import Path

import uvicorn


def main():
    project_root = Path(__file__).parent.parent
    os.chdir(project_root)

    # Ensure src is in python path
    src_path = str(project_root / "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)

    logging.basicConfig(
        level=os.environ.get("SUPPLIER_PRICING_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("Starting Supplier Pricing API (FastAPI)...")
    try:
        uvicorn.run(
            "supplier_pricing.api.main:app",
            host=os.environ.get("SUPPLIER_PRICING_HOST", "0.0.0.0"),
            port=int(os.environ.get("SUPPLIER_PRICING_PORT", "8000")),
            log_config=None,
        )
    except KeyboardInterrupt:
        print("\nAPI stopped.")


if __name__ == "__main__":
    main()
