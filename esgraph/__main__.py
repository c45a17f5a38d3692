"""
esgraph: serve elastic indices as a federated GraphQL subgraph
"""

import argparse
import asyncio
import inspect
import logging
from pathlib import Path

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from esgraph.config import ENV_PREFIX, get_settings, validate_settings
from esgraph.connections import elastic_connection
from esgraph.store import ElasticSearchCapability
from esgraph.subgraph import create_subgraph


def run(args):
    logging.info(f"Starting server at port {args.port}, debug={not args.nodebug}")
    if warning := validate_settings():
        logging.warning(warning)
    logging.info(
        "To change server config, create an .env file and/or set environment parameters,\n"
        f"{' ' * 26}see esgraph/config.py for more information.\n"
        f"{' ' * 26}You can use `python -m esgraph config` to see the current settings\n"
    )
    log_config = "logging.yml" if Path("logging.yml").exists() else LOGGING_CONFIG
    uvicorn.run("esgraph.api:app", host="0.0.0.0", reload=not args.nodebug, port=int(args.port), log_config=log_config)


async def print_schema(_args):
    settings = get_settings()
    if all(e.mapping is not None for e in settings.entities):
        subgraph = await create_subgraph(settings, store=ElasticSearchCapability())
    else:
        async with elastic_connection() as elastic:
            subgraph = await create_subgraph(settings, elastic)
    print(subgraph.schema.type_definitions)


def config(_args):
    for k, v in get_settings().model_dump(mode="json").items():
        print(f"{ENV_PREFIX.upper()}{k.upper()}={v}")
    if warning := validate_settings():
        logging.warning(warning)


def main():
    parser = argparse.ArgumentParser(description=__doc__, prog="python -m esgraph")

    subparsers = parser.add_subparsers(dest="action", title="action", help="Action to perform:", required=True)
    p = subparsers.add_parser("run", help="Run the GraphQL server")
    p.add_argument(
        "--no-debug",
        action="store_true",
        dest="nodebug",
        help="Disable debug mode (auto reload)",
    )
    p.add_argument("-p", "--port", help="Port", default=get_settings().port)
    p.set_defaults(func=run)

    p = subparsers.add_parser("schema", help="Print the type definitions (SDL) of the subgraph")
    p.set_defaults(func=print_schema)

    p = subparsers.add_parser("config", help="Show the current settings")
    p.set_defaults(func=config)

    args = parser.parse_args()

    logging.basicConfig(format="[%(levelname)-7s:%(name)-15s] %(message)s", level=logging.INFO)
    es_logger = logging.getLogger("elasticsearch")
    es_logger.setLevel(logging.WARNING)

    if inspect.iscoroutinefunction(args.func):
        asyncio.run(args.func(args))
    else:
        args.func(args)


if __name__ == "__main__":
    main()
