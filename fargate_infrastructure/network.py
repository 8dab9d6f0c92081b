"""Preflight checks for services that deploy into an existing VPC.

``Vpc.from_lookup`` only fails once the CDK toolkit queries the account, and
then mid-synthesis. Checking up front means a missing VPC stops the app
before any stack is created.
"""

import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import NetworkConfig
from .errors import PreflightError, VpcNotFoundError

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"InvalidVpcID.NotFound", "InvalidVpcID.Malformed"}


def ensure_vpc_exists(network: NetworkConfig, region: str, ec2_client=None) -> str:
    """Make sure the VPC a service will be looked up in exists.

    Args:
        network: Network settings of a service in lookup mode.
        region: Region the service deploys to.
        ec2_client: Optional boto3 EC2 client, created for ``region`` if omitted.

    Returns:
        The id of the VPC that the lookup will resolve to.

    Raises:
        VpcNotFoundError: If the VPC (or the default VPC) does not exist.
        PreflightError: If the EC2 API call fails for any other reason.
    """
    if not network.is_lookup:
        raise ValueError("ensure_vpc_exists only applies to VPC lookups")

    if ec2_client is None:
        ec2_client = boto3.client("ec2", region_name=region)

    if network.vpc_id:
        request = {"VpcIds": [network.vpc_id]}
    else:
        request = {"Filters": [{"Name": "isDefault", "Values": ["true"]}]}

    try:
        response = ec2_client.describe_vpcs(**request)
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code", "")
        if code in NOT_FOUND_CODES:
            raise VpcNotFoundError(network.vpc_id, region) from exc
        raise PreflightError(f"could not describe VPCs in {region}: {exc}") from exc
    except BotoCoreError as exc:
        # missing credentials, unreachable endpoint
        raise PreflightError(f"could not reach EC2 in {region}: {exc}") from exc

    vpcs = response.get("Vpcs", [])
    if not vpcs:
        raise VpcNotFoundError(network.vpc_id, region)

    vpc_id = vpcs[0]["VpcId"]
    logger.info("Found %s in %s", vpc_id, region)
    return vpc_id


def preflight(services, region: str, ec2_client: Optional[object] = None) -> None:
    """Run :func:`ensure_vpc_exists` for every service that looks up its VPC."""
    for service in services:
        if service.network.is_lookup:
            ensure_vpc_exists(service.network, region, ec2_client=ec2_client)
