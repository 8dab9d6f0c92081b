"""Configuration for Fargate service deployments.

Every deployment is described by a :class:`DeploymentConfig` holding one
:class:`ServiceConfig` per service variant. The values normally come from the
``services`` key of the CDK context (see ``cdk.json``); everything that used to
be a literal inside a stack (account, VPC id, image path, sizing, ports) is a
field here.

Cross-field checks run when the models are built, so an invalid combination
is rejected before any construct is created.
"""

import ipaddress
import logging
import os
from typing import Annotated, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .constants import (ANY_IPV4, DEFAULT_ACCOUNT_ENV_VAR, DEFAULT_REGION, DEFAULT_VPC_CIDR,
                        LOG_RETENTION)
from .errors import ConfigurationError
from .sizing import validate_combination

logger = logging.getLogger(__name__)

PortNumber = Annotated[int, Field(ge=1, le=65535)]


class NetworkConfig(BaseModel):
    """Where the service runs.

    Either a new VPC (the default) or an existing one looked up by id or by
    the account's default VPC.
    """

    model_config = ConfigDict(extra="forbid")

    vpc_id: Optional[str] = Field(default=None, pattern=r"^vpc-[0-9a-f]+$")
    use_default_vpc: bool = False
    max_azs: int = Field(default=2, ge=1, le=6)
    nat_gateways: int = Field(default=0, ge=0)
    cidr: Optional[str] = None
    cidr_mask: int = Field(default=24, ge=16, le=28)

    @property
    def is_lookup(self) -> bool:
        return self.vpc_id is not None or self.use_default_vpc

    @field_validator("cidr")
    @classmethod
    def _check_cidr(cls, value):
        if value is not None:
            ipaddress.IPv4Network(value)
        return value

    @model_validator(mode="after")
    def _check_mode(self):
        if self.vpc_id is not None and self.use_default_vpc:
            raise ValueError("vpc_id and use_default_vpc are mutually exclusive")
        if self.is_lookup:
            if self.cidr is not None or self.nat_gateways:
                raise ValueError("cidr and nat_gateways only apply to a new VPC")
        elif self.nat_gateways > self.max_azs:
            raise ValueError(
                f"nat_gateways ({self.nat_gateways}) cannot exceed max_azs ({self.max_azs})")
        else:
            self._check_subnet_space()
        return self

    def _check_subnet_space(self):
        # one subnet per AZ per subnet group: public, plus private when NAT is on
        block = ipaddress.IPv4Network(self.cidr or DEFAULT_VPC_CIDR)
        if self.cidr_mask <= block.prefixlen:
            raise ValueError(
                f"cidr_mask /{self.cidr_mask} must be smaller than the VPC block {block}")

        needed = self.max_azs * (2 if self.nat_gateways else 1)
        available = 2 ** (self.cidr_mask - block.prefixlen)
        if available < needed:
            raise ValueError(
                f"{block} only fits {available} /{self.cidr_mask} subnets, {needed} needed")


class ImageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # registry path with the tag included, or an ECR repository name when from_ecr is set
    repository: str = Field(min_length=1)
    from_ecr: bool = False
    tag: Optional[str] = None

    @model_validator(mode="after")
    def _check_tag(self):
        if self.tag is not None and not self.from_ecr:
            raise ValueError("tag only applies to ECR images, put it in the registry path instead")
        return self

    @property
    def ecr_tag(self) -> str:
        return self.tag or "latest"


class HealthCheckConfig(BaseModel):
    """Target group health check and the service's startup grace period."""

    model_config = ConfigDict(extra="forbid")

    path: str = Field(default="/", pattern=r"^/")
    port: Optional[PortNumber] = None
    healthy_threshold_count: int = Field(default=2, ge=2, le=10)
    unhealthy_threshold_count: int = Field(default=5, ge=2, le=10)
    timeout_seconds: int = Field(default=5, ge=2, le=120)
    interval_seconds: int = Field(default=30, ge=5, le=300)
    grace_period_seconds: int = Field(default=60, ge=0)

    @model_validator(mode="after")
    def _check_timing(self):
        if self.timeout_seconds >= self.interval_seconds:
            raise ValueError(
                f"timeout_seconds ({self.timeout_seconds}) must be less than "
                f"interval_seconds ({self.interval_seconds})")
        return self


class SecurityRuleConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    port: PortNumber
    protocol: Literal["tcp", "udp"] = "tcp"
    cidr: str = ANY_IPV4
    direction: Literal["ingress", "egress"] = "ingress"
    description: str = ""

    @field_validator("cidr")
    @classmethod
    def _check_cidr(cls, value):
        ipaddress.IPv4Network(value)
        return value


class ExecutionPolicyConfig(BaseModel):
    """Permissions for the ECS agent that pulls the image and ships logs.

    There is no default action list: every service has to say what its agent
    may do.
    """

    model_config = ConfigDict(extra="forbid")

    actions: List[str] = Field(min_length=1)
    resources: List[str] = Field(default_factory=lambda: ["*"], min_length=1)

    @field_validator("actions")
    @classmethod
    def _no_wildcard(cls, value):
        if "*" in value:
            raise ValueError("wildcard action '*' is not allowed, list the actions explicitly")
        return value


class ServiceConfig(BaseModel):
    """One containerized service behind a public load balancer."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(pattern=r"^[a-z][a-z0-9-]*$", max_length=48)
    image: ImageConfig
    cpu: int = 256
    memory_mib: int = 512
    container_port: PortNumber
    additional_container_ports: List[PortNumber] = Field(default_factory=list)
    desired_count: int = Field(default=1, ge=0)
    assign_public_ip: bool = True
    public_load_balancer: bool = True
    listener_port: PortNumber = 80
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    security_rules: List[SecurityRuleConfig] = Field(default_factory=list)
    allow_all_outbound: bool = True
    execution_policy: ExecutionPolicyConfig
    stream_prefix: Optional[str] = None
    log_retention_days: int = 7
    cluster_name: Optional[str] = None
    container_insights: bool = False
    environment: Dict[str, str] = Field(default_factory=dict)
    output_url: bool = True
    # disabled services are only built when selected with -c service=<name>
    enabled: bool = True

    @field_validator("image", mode="before")
    @classmethod
    def _image_from_string(cls, value):
        if isinstance(value, str):
            return {"repository": value}
        return value

    @field_validator("log_retention_days")
    @classmethod
    def _check_retention(cls, value):
        if value not in LOG_RETENTION:
            valid = ", ".join(str(days) for days in LOG_RETENTION)
            raise ValueError(f"log_retention_days must be one of {valid}")
        return value

    @model_validator(mode="after")
    def _check_service(self):
        validate_combination(self.cpu, self.memory_mib)

        if self.health_check_port not in self.container_ports:
            raise ValueError(
                f"health check port {self.health_check_port} does not match any "
                f"container port mapping {self.container_ports}")

        if not self.assign_public_ip and not self.network.is_lookup and self.network.nat_gateways == 0:
            raise ValueError(
                "assign_public_ip=false needs private subnets, set network.nat_gateways")

        ingress = [rule for rule in self.security_rules if rule.direction == "ingress"]
        if not ingress:
            self.security_rules = self.security_rules + [
                SecurityRuleConfig(
                    port=self.container_port,
                    description=f"Allow traffic on port {self.container_port}")
            ]
        elif not any(rule.port == self.container_port and rule.protocol == "tcp" for rule in ingress):
            raise ValueError(
                f"no tcp ingress rule covers container port {self.container_port}")

        if not self.allow_all_outbound and not any(
                rule.direction == "egress" for rule in self.security_rules):
            raise ValueError("allow_all_outbound=false requires at least one egress rule")
        return self

    @property
    def container_ports(self) -> List[int]:
        ports = []
        for port in [self.container_port] + self.additional_container_ports:
            if port not in ports:
                ports.append(port)
        return ports

    @property
    def health_check_port(self) -> int:
        if self.health_check.port is None:
            return self.container_port
        return self.health_check.port

    @property
    def log_stream_prefix(self) -> str:
        return self.stream_prefix or self.name


class DeploymentConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account: Optional[str] = Field(default=None, pattern=r"^\d{12}$")
    account_env_var: str = DEFAULT_ACCOUNT_ENV_VAR
    region: str = DEFAULT_REGION
    services: List[ServiceConfig] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_names(self):
        names = [service.name for service in self.services]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate service names: {', '.join(duplicates)}")
        return self

    def resolve_account(self, environ: Mapping[str, str]) -> Optional[str]:
        if self.account:
            return self.account
        return environ.get(self.account_env_var) or None

    def select(self, name: str) -> "DeploymentConfig":
        for service in self.services:
            if service.name == name:
                return self.model_copy(update={"services": [service]})
        known = ", ".join(service.name for service in self.services)
        raise ConfigurationError(f"unknown service {name!r} (configured: {known})")

    def enabled(self) -> "DeploymentConfig":
        services = [service for service in self.services if service.enabled]
        if not services:
            raise ConfigurationError("every configured service is disabled")
        return self.model_copy(update={"services": services})


def load_config(raw: Mapping, environ: Optional[Mapping[str, str]] = None) -> DeploymentConfig:
    """Validate raw context values and resolve the target account.

    Args:
        raw: Mapping with ``account``, ``region`` and ``services`` keys.
        environ: Environment to read the account from, ``os.environ`` by default.

    Returns:
        The validated deployment configuration, with ``account`` filled in
        from the environment when it was not given literally.

    Raises:
        ConfigurationError: If any value or combination of values is invalid.
    """
    if environ is None:
        environ = os.environ

    try:
        config = DeploymentConfig.model_validate(dict(raw))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid deployment configuration:\n{exc}") from exc

    account = config.resolve_account(environ)
    if config.account:
        logger.info("Using account %s from configuration", account)
    elif account:
        logger.info("Using account %s from $%s", account, config.account_env_var)
    else:
        logger.warning("No account configured, synthesizing environment-agnostic stacks")

    return config.model_copy(update={"account": account})
