"""AWS control plane access for asgctl.

Example:
    from injector import Injector
    from asgctl.providers.aws import AWS, AWSModule, GroupStateReader

    injector = Injector([AWSModule()])
    injector.binder.bind(AWS, to=AWS(region="eu-west-1"))
"""

from asgctl.providers.aws.clients import AutoScalingClientFactory, AWSModule, EC2ClientFactory
from asgctl.providers.aws.config import AWS
from asgctl.providers.aws.membership import GroupMembership
from asgctl.providers.aws.provisioner import FleetProvisioner
from asgctl.providers.aws.state import GroupStateReader

__all__ = [
    "AWS",
    "AWSModule",
    "AutoScalingClientFactory",
    "EC2ClientFactory",
    "FleetProvisioner",
    "GroupMembership",
    "GroupStateReader",
]
