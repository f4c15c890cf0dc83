"""Plain description of the resources the stack declares.

``declare_topology`` turns a StackConfiguration into a Topology without
creating any constructs, so the resource layout can be checked without
synthesizing a template. The stack walks the Topology to build the real
CDK constructs.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from aws_cdk import aws_ec2 as ec2

from minimalist_cdk_template.config import ACCESS_SSH, StackConfiguration

SSH_PORT = 22
POSTGRES_PORT = 5432
POSTGRES_USERNAME = "postgres"
SUBNET_CIDR_MASK = 24


@dataclass(frozen=True)
class SubnetLayer:
    name: str
    subnet_type: ec2.SubnetType
    cidr_mask: int = SUBNET_CIDR_MASK


@dataclass(frozen=True)
class NetworkIntent:
    cidr: str
    max_azs: int
    nat_gateways: int
    subnet_layers: Tuple[SubnetLayer, ...]


@dataclass(frozen=True)
class IngressIntent:
    port: int
    description: str
    # Exactly one of these is set
    source_cidr: Optional[str] = None
    source_security_group: Optional[str] = None


@dataclass(frozen=True)
class ComputeIntent:
    instance_type: ec2.InstanceType
    subnet_type: ec2.SubnetType
    allow_all_outbound: bool
    ssm_session_permissions: bool
    ingress: Tuple[IngressIntent, ...]


@dataclass(frozen=True)
class DatabaseIntent:
    instance_type: ec2.InstanceType
    subnet_type: ec2.SubnetType
    database_name: str
    allocated_storage: int
    max_allocated_storage: int
    username: str
    port: int
    allow_all_outbound: bool
    ingress: Tuple[IngressIntent, ...]


@dataclass(frozen=True)
class OutputIntent:
    name: str
    description: str


@dataclass(frozen=True)
class Topology:
    network: NetworkIntent
    compute: ComputeIntent
    database: Optional[DatabaseIntent]
    outputs: Tuple[OutputIntent, ...]


# Name the database ingress rule uses to refer to the compute security group
COMPUTE_SECURITY_GROUP = "Ec2SecurityGroup"


def _network(config: StackConfiguration) -> NetworkIntent:
    return NetworkIntent(
        cidr=config.vpc_cidr,
        max_azs=config.max_azs,
        nat_gateways=0,
        subnet_layers=(
            SubnetLayer("Public", ec2.SubnetType.PUBLIC),
            SubnetLayer("Private", ec2.SubnetType.PRIVATE_ISOLATED),
        ),
    )


def _compute(config: StackConfiguration) -> ComputeIntent:
    ingress = ()
    if config.access_mode == ACCESS_SSH:
        ingress = (IngressIntent(port=SSH_PORT,
                                 description=f"SSH from {config.ssh_cidr}",
                                 source_cidr=config.ssh_cidr),)

    return ComputeIntent(
        instance_type=config.ec2_instance_type,
        subnet_type=ec2.SubnetType.PUBLIC,
        allow_all_outbound=True,
        ssm_session_permissions=True,
        ingress=ingress,
    )


def _database(config: StackConfiguration) -> Optional[DatabaseIntent]:
    if not config.enable_database:
        return None

    return DatabaseIntent(
        instance_type=config.rds_instance_type,
        subnet_type=ec2.SubnetType.PRIVATE_ISOLATED,
        database_name=config.database_name,
        allocated_storage=config.allocated_storage,
        # Same as allocated storage, storage autoscaling stays off
        max_allocated_storage=config.allocated_storage,
        username=POSTGRES_USERNAME,
        port=POSTGRES_PORT,
        allow_all_outbound=False,
        ingress=(IngressIntent(port=POSTGRES_PORT,
                               description="Allow PostgreSQL access from EC2 instance only",
                               source_security_group=COMPUTE_SECURITY_GROUP),),
    )


def _outputs(with_database: bool) -> Tuple[OutputIntent, ...]:
    outputs = [
        OutputIntent("InstancePublicIp", "Public IP address of the EC2 instance"),
        OutputIntent("InstanceId", "Instance ID of the EC2 instance"),
    ]
    if with_database:
        outputs += [
            OutputIntent("RdsEndpoint", "RDS database endpoint address"),
            OutputIntent("RdsSecretArn", "ARN of the secret containing RDS credentials"),
        ]
    return tuple(outputs)


def declare_topology(config: StackConfiguration) -> Topology:
    database = _database(config)
    return Topology(
        network=_network(config),
        compute=_compute(config),
        database=database,
        outputs=_outputs(database is not None),
    )
