"""Run the admin service: ``python -m relay_admin``."""

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "relay_admin.main:app",
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8000")),
        log_config=None,  # setup_logging() owns the handlers
    )


if __name__ == "__main__":
    main()
