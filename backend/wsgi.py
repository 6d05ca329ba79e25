"""WSGI entry point for the flow tree backend."""

from __future__ import annotations

import os

from app import create_app

app = create_app()

if __name__ == "__main__":  # pragma: no cover - manual runtime entrypoint
    port = int(os.getenv("FLOWTREE_API_PORT") or os.getenv("PORT") or 9300)
    app.logger.info(
        "Serving flow tree API on port %s (transactional mutations: %s)",
        port,
        app.config["FLOW_TRANSACTIONAL_MUTATIONS"],
    )
    app.run(host="0.0.0.0", port=port)
