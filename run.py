"""Run the LSP price aggregator with Flask's development server."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent


def main() -> None:
    # .env must be loaded before config classes read the environment.
    load_dotenv(PROJECT_ROOT / ".env")

    from lsp_pricing import create_app

    app = create_app(config_name=os.getenv("APP_ENV"))
    app.run(
        host=os.getenv("FLASK_RUN_HOST", "0.0.0.0"),
        port=int(os.getenv("FLASK_RUN_PORT", "5000")),
        debug=app.config.get("DEBUG", False),
    )


if __name__ == "__main__":
    main()
