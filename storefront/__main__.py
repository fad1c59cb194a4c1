import uvicorn

from . import config


def run() -> None:
    uvicorn.run("storefront.main:app", host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
