"""
ASGI entry point for Household Ledger.

Run with:
    uvicorn app.main:app

or directly with `python -m app.main`. Storage backend, webhook secret
and log level come from the environment (see household_ledger.config).
"""

import uvicorn

from household_ledger.webhooks import create_app

app = create_app()


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000)
