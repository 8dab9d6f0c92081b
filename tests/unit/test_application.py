import unittest

import boto3
from aws_cdk import App
from botocore.stub import Stubber

from fargate_infrastructure.application import build_app
from fargate_infrastructure.errors import ConfigurationError, VpcNotFoundError

EXECUTION_POLICY = {"actions": ["logs:CreateLogStream", "logs:PutLogEvents"]}


def service(name, **overrides):
    values = {
        "name": name,
        "image": "nginx",
        "container_port": 80,
        "execution_policy": EXECUTION_POLICY,
    }
    values.update(overrides)
    return values


class TestBuildApp(unittest.TestCase):

    def setUp(self):
        self.client = boto3.client(
            "ec2",
            region_name="us-east-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing")
        self.stubber = Stubber(self.client)
        self.services = [
            service("web"),
            service("legacy", enabled=False, network={"vpc_id": "vpc-0abc"}),
        ]

    def app(self, **context):
        context.setdefault("account", "123456789012")
        context.setdefault("services", self.services)
        return App(context=context)

    def test_missing_vpc_stops_before_any_stack_is_built(self):
        app = self.app(services=[service("existing", network={"vpc_id": "vpc-0abc"})])
        self.stubber.add_client_error("describe_vpcs", service_error_code="InvalidVpcID.NotFound")

        with self.stubber:
            with self.assertRaises(VpcNotFoundError):
                build_app(app, environ={}, ec2_client=self.client)

        self.stubber.assert_no_pending_responses()
        self.assertEqual(len(app.node.children), 0)

    def test_disabled_services_are_left_out(self):
        app = self.app()

        with self.stubber:
            stacks = build_app(app, environ={}, ec2_client=self.client)

        self.assertEqual([s.stack_name for s in stacks], ["web-stack"])

    def test_selecting_a_disabled_service_builds_it(self):
        app = self.app(service="legacy")
        self.stubber.add_response(
            "describe_vpcs", {"Vpcs": [{"VpcId": "vpc-0abc"}]}, {"VpcIds": ["vpc-0abc"]})

        with self.stubber:
            stacks = build_app(app, environ={}, ec2_client=self.client)

        self.stubber.assert_no_pending_responses()
        self.assertEqual([s.stack_name for s in stacks], ["legacy-stack"])
        self.assertEqual(stacks[0].account, "123456789012")

    def test_skip_preflight(self):
        app = self.app(service="legacy", skip_preflight="true")

        with self.stubber:
            stacks = build_app(app, environ={}, ec2_client=self.client)

        self.assertEqual([s.stack_name for s in stacks], ["legacy-stack"])

    def test_invalid_context_builds_nothing(self):
        app = self.app(services=[service("web", health_check={"port": 8080})])

        with self.assertRaises(ConfigurationError):
            build_app(app, environ={}, ec2_client=self.client)

        self.assertEqual(len(app.node.children), 0)
