"""Run the provisioning status API as a standalone HTTP server.

Usage:
    PROVISIONING_PORT=8080 python -m bonfire_provisioning

Settings come from the environment (see ``ProvisioningSettings.from_env``);
PINATA_JWT, API_KEY and CHAIN_RPC_URL are needed even for local runs
because the real clients are wired.
"""

import os

import uvicorn

from .app import create_app
from .settings import ProvisioningSettings


def main():
    host = os.environ.get("PROVISIONING_HOST", "127.0.0.1")
    port = int(os.environ.get("PROVISIONING_PORT", "8080"))
    settings = ProvisioningSettings.from_env()

    app = create_app(settings)

    print(f"Bonfire provisioning API starting on http://{host}:{port}")
    print(f"Environment: {settings.environment}")
    print(f"Workflow store: {settings.workflow_store_dir or 'in-memory'}")

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
