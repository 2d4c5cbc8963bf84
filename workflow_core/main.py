"""Main entry point for the workflow core service."""

from .config import load_config
from .factory import create_app

config = load_config()
app = create_app(config)


def run():
    """Run the service with uvicorn using the loaded configuration."""
    import uvicorn
    uvicorn.run("workflow_core.main:app", **config.get_uvicorn_config())


if __name__ == "__main__":
    run()
