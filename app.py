#!/usr/bin/env python3

import aws_cdk as cdk

from fargate_infrastructure.application import build_app, configure_logging

configure_logging()
app = cdk.App()

# cdk synth -c service=<name> to work on one variant, -c skip_preflight=true offline
build_app(app)

app.synth()
