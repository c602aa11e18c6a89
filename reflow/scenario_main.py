"""
Scenario runner. Drives a running Reflow service over HTTP and logs the
outcome of one scripted scenario (SCENARIO=claim_race|full_lifecycle).
"""
import asyncio
import logging
import sys

import structlog

from reflow.client import ReflowClient
from reflow.config import config
from reflow.services.scenarios import run_claim_race, run_full_lifecycle

logging.basicConfig(format="%(message)s", level=getattr(logging, config.log_level, logging.INFO))

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

log = structlog.get_logger()

SCENARIOS = {
    "claim_race": lambda client: run_claim_race(client, collectors=config.scenario_collectors),
    "full_lifecycle": lambda client: run_full_lifecycle(client),
}


async def main():
    runner = SCENARIOS.get(config.scenario)
    if runner is None:
        log.error("unknown_scenario", scenario=config.scenario, known=sorted(SCENARIOS))
        return 2

    client = ReflowClient(config.service_url, config)
    log.info("scenario_starting", scenario=config.scenario, url=config.service_url)
    result = await runner(client)
    log.info("scenario_finished", **result)
    return 0 if result["status"] == "completed" else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
