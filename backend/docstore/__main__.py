import argparse
import asyncio
import logging

from docstore.config import settings
from docstore.database import create_engine, init_models


async def _init_db(drop: bool) -> None:
    engine = create_engine(settings)
    try:
        await init_models(engine, drop=drop)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(prog="docstore", description="Document store service")
    sub = p.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default=settings.API_HOST)
    serve.add_argument("--port", type=int, default=settings.API_PORT)

    sub.add_parser("init-db", help="Create the documents table").add_argument(
        "--drop", action="store_true", help="Drop the existing table first"
    )

    args = p.parse_args(argv)
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.cmd == "init-db":
        asyncio.run(_init_db(args.drop))
    else:
        import uvicorn

        uvicorn.run("docstore.main:app", host=args.host, port=args.port, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
