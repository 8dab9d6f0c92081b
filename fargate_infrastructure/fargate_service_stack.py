import logging
from typing import List

from aws_cdk import (App, CfnOutput, Duration, Environment, Stack,
                     aws_ec2 as ec2, aws_ecr as ecr, aws_ecs as ecs,
                     aws_ecs_patterns as ecs_patterns,
                     aws_iam as iam)
from constructs import Construct

from .config import DeploymentConfig, ServiceConfig
from .constants import LOG_RETENTION

logger = logging.getLogger(__name__)


class FargateServiceStack(Stack):
    """A Fargate service behind an application load balancer.

    VPC, cluster, task definition, security group and service are all derived
    from one ServiceConfig; the config has already rejected invalid
    combinations by the time it gets here.
    """

    def __init__(self, scope: Construct, id: str, config: ServiceConfig, **kwargs) -> None:
        super().__init__(scope, id, **kwargs)

        self.config = config
        prefix = config.name

        self.vpc = self._network(prefix)

        self.cluster = ecs.Cluster(self, f"{prefix}-cluster",
            vpc=self.vpc,
            cluster_name=config.cluster_name,
            container_insights_v2=ecs.ContainerInsights.ENABLED if config.container_insights else None
        )

        self.task_definition = ecs.FargateTaskDefinition(self, f"{prefix}-task-def",
            cpu=config.cpu,
            memory_limit_mib=config.memory_mib
        )

        self.task_definition.add_to_execution_role_policy(iam.PolicyStatement(
            effect=iam.Effect.ALLOW,
            actions=config.execution_policy.actions,
            resources=config.execution_policy.resources
        ))

        self.container = self.task_definition.add_container(f"{prefix}-container",
            image=self._image(prefix),
            environment=config.environment or None,
            logging=ecs.LogDriver.aws_logs(
                stream_prefix=config.log_stream_prefix,
                log_retention=LOG_RETENTION[config.log_retention_days])
        )

        # the first mapping is the one the load balancer targets
        for port in config.container_ports:
            self.container.add_port_mappings(ecs.PortMapping(container_port=port))

        self.security_group = self._security_group(prefix)

        self.service = ecs_patterns.ApplicationLoadBalancedFargateService(self, f"{prefix}-service",
            cluster=self.cluster,
            task_definition=self.task_definition,
            desired_count=config.desired_count,
            assign_public_ip=config.assign_public_ip,
            public_load_balancer=config.public_load_balancer,
            listener_port=config.listener_port,
            security_groups=[self.security_group],
            task_subnets=ec2.SubnetSelection(
                subnet_type=ec2.SubnetType.PUBLIC if config.assign_public_ip
                else ec2.SubnetType.PRIVATE_WITH_EGRESS),
            # time for the container to start before failed checks count
            health_check_grace_period=Duration.seconds(config.health_check.grace_period_seconds)
        )

        health_check = config.health_check
        self.service.target_group.configure_health_check(
            path=health_check.path,
            port=str(config.health_check_port),
            healthy_threshold_count=health_check.healthy_threshold_count,
            unhealthy_threshold_count=health_check.unhealthy_threshold_count,
            timeout=Duration.seconds(health_check.timeout_seconds),
            interval=Duration.seconds(health_check.interval_seconds)
        )

        for port in config.container_ports:
            self.service.service.connections.allow_from(
                self.service.load_balancer,
                ec2.Port.tcp(port),
                f"Allow traffic from load balancer on port {port}"
            )

        if config.output_url:
            CfnOutput(self, f"{prefix}-url",
                description=f"{prefix} endpoint",
                value=f"http://{self.service.load_balancer.load_balancer_dns_name}"
            )

        logger.info("Declared %s: %s cpu=%s memory=%s port=%s desired=%s",
                    id, config.image.repository, config.cpu, config.memory_mib,
                    config.container_port, config.desired_count)

    def _network(self, prefix: str) -> ec2.IVpc:
        network = self.config.network

        if network.vpc_id:
            logger.debug("%s: looking up %s", prefix, network.vpc_id)
            return ec2.Vpc.from_lookup(self, f"{prefix}-vpc", vpc_id=network.vpc_id)
        if network.use_default_vpc:
            logger.debug("%s: looking up default VPC", prefix)
            return ec2.Vpc.from_lookup(self, f"{prefix}-vpc", is_default=True)

        subnets = [
            ec2.SubnetConfiguration(
                name="public",
                subnet_type=ec2.SubnetType.PUBLIC,
                cidr_mask=network.cidr_mask)
        ]
        # without NAT the VPC is fully public
        if network.nat_gateways:
            subnets.append(ec2.SubnetConfiguration(
                name="private",
                subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                cidr_mask=network.cidr_mask))

        logger.debug("%s: new VPC across %s AZs with %s NAT gateways",
                     prefix, network.max_azs, network.nat_gateways)
        return ec2.Vpc(self, f"{prefix}-vpc",
            ip_addresses=ec2.IpAddresses.cidr(network.cidr) if network.cidr else None,
            max_azs=network.max_azs,
            nat_gateways=network.nat_gateways,
            subnet_configuration=subnets
        )

    def _image(self, prefix: str) -> ecs.ContainerImage:
        image = self.config.image
        if image.from_ecr:
            repository = ecr.Repository.from_repository_name(
                self, f"{prefix}-repository", image.repository)
            return ecs.ContainerImage.from_ecr_repository(repository, image.ecr_tag)
        return ecs.ContainerImage.from_registry(image.repository)

    def _security_group(self, prefix: str) -> ec2.SecurityGroup:
        security_group = ec2.SecurityGroup(self, f"{prefix}-sg",
            vpc=self.vpc,
            allow_all_outbound=self.config.allow_all_outbound
        )

        # rules are only ever added; overlapping rules are fine
        for rule in self.config.security_rules:
            port = ec2.Port.udp(rule.port) if rule.protocol == "udp" else ec2.Port.tcp(rule.port)
            peer = ec2.Peer.ipv4(rule.cidr)
            if rule.direction == "egress":
                security_group.add_egress_rule(peer, port, rule.description or None)
            else:
                security_group.add_ingress_rule(peer, port, rule.description or None)

        return security_group


def build_service_stacks(app: App, config: DeploymentConfig) -> List[FargateServiceStack]:
    env = Environment(account=config.account, region=config.region)
    return [
        FargateServiceStack(app, f"{service.name}-stack", service, env=env)
        for service in config.services
    ]
