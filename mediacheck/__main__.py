import uvicorn

from mediacheck import config


def main() -> None:
    uvicorn.run(
        "mediacheck.main:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=config.is_development(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
