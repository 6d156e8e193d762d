import uvicorn

from ridecoord.core.app_factory import create_app

app = create_app()


def run() -> None:
    """Serve the API with uvicorn (``ridecoord`` console script)."""
    # log_config=None keeps the JSON logging installed by create_app
    uvicorn.run("ridecoord.main:app", host="0.0.0.0", port=8000, log_config=None)
