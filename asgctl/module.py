"""Central DI module for asgctl.

Provides the controller's components as singletons on top of the AWS
client factories from ``AWSModule``:
- RecommenderClient
- GroupLocks
- GroupStateReader, GroupMembership, FleetProvisioner
- SwapOrchestrator, FleetInitializer, FleetRebalancer
- EventRouter
"""

from __future__ import annotations

from injector import Binder, Injector, Module, provider, singleton

from .config import ControllerConfig
from .infra.http import HttpClient
from .orchestration.initializer import FleetInitializer
from .orchestration.locks import GroupLocks
from .orchestration.rebalancer import FleetRebalancer
from .orchestration.swap import SwapOrchestrator
from .providers.aws.clients import AutoScalingClientFactory, AWSModule, EC2ClientFactory
from .providers.aws.config import AWS
from .providers.aws.membership import GroupMembership
from .providers.aws.provisioner import FleetProvisioner
from .providers.aws.state import GroupStateReader
from .recommender import RecommenderClient
from .router import EventRouter


class ControllerModule(Module):
    """Binds the controller configuration and wires the orchestrators.

    Usage:
        injector = Injector([AWSModule(), ControllerModule(config)])
        router = injector.get(EventRouter)
    """

    def __init__(self, config: ControllerConfig) -> None:
        self._config = config

    def configure(self, binder: Binder) -> None:
        binder.bind(ControllerConfig, to=self._config)
        binder.bind(
            AWS,
            to=AWS(region=self._config.region, request_timeout=self._config.request_timeout),
        )

    @singleton
    @provider
    def provide_recommender(self, config: ControllerConfig) -> RecommenderClient:
        http = HttpClient(config.recommender_url, timeout=config.request_timeout)
        return RecommenderClient(http, config.region)

    @singleton
    @provider
    def provide_locks(self) -> GroupLocks:
        return GroupLocks()

    @singleton
    @provider
    def provide_reader(
        self,
        ec2: EC2ClientFactory,
        autoscaling: AutoScalingClientFactory,
        config: ControllerConfig,
    ) -> GroupStateReader:
        return GroupStateReader(ec2, autoscaling, config.original_template_suffix)

    @singleton
    @provider
    def provide_membership(
        self,
        ec2: EC2ClientFactory,
        autoscaling: AutoScalingClientFactory,
        reader: GroupStateReader,
    ) -> GroupMembership:
        return GroupMembership(ec2, autoscaling, reader)

    @singleton
    @provider
    def provide_provisioner(
        self,
        ec2: EC2ClientFactory,
        membership: GroupMembership,
        config: ControllerConfig,
    ) -> FleetProvisioner:
        return FleetProvisioner(
            ec2,
            membership,
            spot_request_policy=config.polling.spot_request,
            instance_running_policy=config.polling.instance_running,
        )

    @singleton
    @provider
    def provide_swap(
        self,
        reader: GroupStateReader,
        membership: GroupMembership,
        provisioner: FleetProvisioner,
        recommender: RecommenderClient,
        locks: GroupLocks,
    ) -> SwapOrchestrator:
        return SwapOrchestrator(reader, membership, provisioner, recommender, locks)

    @singleton
    @provider
    def provide_initializer(
        self,
        reader: GroupStateReader,
        membership: GroupMembership,
        provisioner: FleetProvisioner,
        recommender: RecommenderClient,
        locks: GroupLocks,
        config: ControllerConfig,
    ) -> FleetInitializer:
        return FleetInitializer(
            reader, membership, provisioner, recommender, locks,
            group_pending_policy=config.polling.group_pending,
        )

    @singleton
    @provider
    def provide_rebalancer(
        self,
        reader: GroupStateReader,
        membership: GroupMembership,
        provisioner: FleetProvisioner,
        recommender: RecommenderClient,
        locks: GroupLocks,
        config: ControllerConfig,
    ) -> FleetRebalancer:
        return FleetRebalancer(
            reader, membership, provisioner, recommender, locks,
            group_pending_policy=config.polling.group_pending,
        )

    @singleton
    @provider
    def provide_router(
        self,
        swap: SwapOrchestrator,
        initializer: FleetInitializer,
        rebalancer: FleetRebalancer,
    ) -> EventRouter:
        return EventRouter(swap, initializer, rebalancer)


def create_injector(config: ControllerConfig) -> Injector:
    return Injector([AWSModule(), ControllerModule(config)])


__all__ = [
    "ControllerModule",
    "create_injector",
]
