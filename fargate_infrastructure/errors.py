class InfrastructureError(Exception):
    pass


class ConfigurationError(InfrastructureError):
    """Raised when a deployment configuration cannot be turned into a stack."""


class InvalidSizingError(ConfigurationError, ValueError):
    """CPU/memory pair outside the Fargate task size table."""

    def __init__(self, cpu, memory_mib, message):
        super().__init__(message)
        self.cpu = cpu
        self.memory_mib = memory_mib


class PreflightError(InfrastructureError):
    """An account lookup failed before synthesis."""


class VpcNotFoundError(PreflightError):

    def __init__(self, vpc_id=None, region=None):
        target = vpc_id or "default VPC"
        super().__init__(f"{target} not found in region {region}")
        self.vpc_id = vpc_id
        self.region = region
