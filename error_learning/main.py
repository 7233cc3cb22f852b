import argparse
import asyncio
import json
import logging
import math
import os
import sys

from error_learning.observation import HookInput, ObservationResult, handle_observation
from error_learning.worker_client import DEFAULT_QUERY_TIMEOUT, WorkerClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("error-learning")

DEFAULT_WORKER_HOST = "127.0.0.1"
DEFAULT_WORKER_PORT = 37777


def get_worker_host() -> str:
    return os.environ.get("ERROR_LEARNING_WORKER_HOST", DEFAULT_WORKER_HOST)


def get_worker_port() -> int:
    """Resolve the worker port, falling back to the default on bad values."""
    raw = os.environ.get("ERROR_LEARNING_WORKER_PORT")
    if not raw:
        return DEFAULT_WORKER_PORT
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid ERROR_LEARNING_WORKER_PORT %r, using %d", raw, DEFAULT_WORKER_PORT)
        return DEFAULT_WORKER_PORT


def get_query_timeout(override: float | None = None) -> float:
    """Seconds to wait for the similar-error query before giving up.

    An explicit ``override`` (the --timeout flag) takes precedence over the
    environment; non-positive or non-finite values fall back to the default.
    """
    if override is not None:
        raw, source = override, "--timeout"
    else:
        raw, source = os.environ.get("ERROR_LEARNING_QUERY_TIMEOUT"), "ERROR_LEARNING_QUERY_TIMEOUT"
        if not raw:
            return DEFAULT_QUERY_TIMEOUT
    try:
        timeout = float(raw)
    except ValueError:
        timeout = -1.0
    if not math.isfinite(timeout) or timeout <= 0:
        logger.warning("Invalid %s %r, using %s", source, raw, DEFAULT_QUERY_TIMEOUT)
        return DEFAULT_QUERY_TIMEOUT
    return timeout


def get_worker_url(host: str | None = None, port: int | None = None) -> str:
    return f"http://{host or get_worker_host()}:{port or get_worker_port()}"


async def run_hook(hook_input: HookInput, worker_url: str, query_timeout: float) -> ObservationResult:
    async with WorkerClient(worker_url, query_timeout=query_timeout) as client:
        return await handle_observation(hook_input, client)


def main():
    parser = argparse.ArgumentParser(description="Error learning PostToolUse hook")
    parser.add_argument("--host", type=str, default=None, help="Worker host")
    parser.add_argument("--port", type=int, default=None, help="Worker port")
    parser.add_argument(
        "--timeout", type=float, default=None, help="Similar-error query timeout in seconds"
    )
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")
    args = parser.parse_args()

    logging.getLogger().setLevel(args.log_level.upper())

    raw = sys.stdin.read()
    hook_input = HookInput.model_validate(json.loads(raw) if raw.strip() else {})

    result = asyncio.run(run_hook(
        hook_input,
        worker_url=get_worker_url(args.host, args.port),
        query_timeout=get_query_timeout(args.timeout),
    ))

    if result.context:
        print(f"\n{result.context}\n")
    print(json.dumps(result.to_hook_output()))


if __name__ == "__main__":
    main()
