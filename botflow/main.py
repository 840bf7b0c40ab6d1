"""ASGI entry point: `uvicorn botflow.main:app`."""

from .config import get_config
from .factory import create_app

app = create_app(get_config())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, **get_config().get_uvicorn_config())
