"""Turns the CDK context of an app into Fargate service stacks."""

import logging
import os
from typing import List, Mapping, Optional

from aws_cdk import App

from .config import load_config
from .fargate_service_stack import FargateServiceStack, build_service_stacks
from .network import preflight

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def context_flag(app: App, key: str) -> bool:
    value = app.node.try_get_context(key)
    return str(value).lower() in ("1", "true", "yes")


def build_app(app: App, environ: Optional[Mapping[str, str]] = None,
              ec2_client=None) -> List[FargateServiceStack]:
    """Validate the app's context, check looked-up VPCs, then declare the stacks.

    ``-c service=<name>`` builds only that service, even when it is disabled;
    otherwise every enabled service is built. ``-c skip_preflight=true`` skips
    the VPC check. Nothing is added to ``app`` if validation or the check fails.
    """
    raw = {}
    for key in ("account", "region", "services"):
        value = app.node.try_get_context(key)
        if value is not None:
            raw[key] = value
    config = load_config(raw, environ)

    selected = app.node.try_get_context("service")
    if selected:
        config = config.select(selected)
    else:
        config = config.enabled()

    if context_flag(app, "skip_preflight"):
        logger.info("Skipping VPC preflight")
    else:
        preflight(config.services, config.region, ec2_client=ec2_client)

    return build_service_stacks(app, config)
