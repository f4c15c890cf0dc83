import logging
from typing import Optional

from aws_cdk import CfnOutput, RemovalPolicy, Stack
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_rds as rds
from constructs import Construct

from minimalist_cdk_template.config import StackConfiguration, resolve_config
from minimalist_cdk_template.topology import (
    COMPUTE_SECURITY_GROUP,
    DatabaseIntent,
    Topology,
    declare_topology,
)

logger = logging.getLogger(__name__)


class MinimalistCdkTemplateStack(Stack):

    def __init__(self, scope: Construct, construct_id: str,
                 config: Optional[StackConfiguration] = None, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.config = config or resolve_config({})
        self.topology: Topology = declare_topology(self.config)

        network = self.topology.network
        logger.info("Declaring VPC %s across up to %d AZs", network.cidr, network.max_azs)

        # Public + isolated subnet per AZ, no NAT gateway to stay on free tier
        self.vpc = ec2.Vpc(self, "Vpc",
                           ip_addresses=ec2.IpAddresses.cidr(network.cidr),
                           max_azs=network.max_azs,
                           nat_gateways=network.nat_gateways,
                           subnet_configuration=[
                               ec2.SubnetConfiguration(name=layer.name,
                                                       subnet_type=layer.subnet_type,
                                                       cidr_mask=layer.cidr_mask)
                               for layer in network.subnet_layers
                           ])

        compute = self.topology.compute
        self.ec2_security_group = ec2.SecurityGroup(self, COMPUTE_SECURITY_GROUP,
                                                    vpc=self.vpc,
                                                    description="Security group for EC2 instance",
                                                    allow_all_outbound=compute.allow_all_outbound)

        for rule in compute.ingress:
            logger.debug("Opening TCP %d on the EC2 security group from %s", rule.port, rule.source_cidr)
            self.ec2_security_group.add_ingress_rule(peer=ec2.Peer.ipv4(rule.source_cidr),
                                                     connection=ec2.Port.tcp(rule.port),
                                                     description=rule.description)

        if not compute.ingress:
            logger.info("No inbound rules on the EC2 instance, access is through SSM Session Manager")

        self.instance = ec2.Instance(self, "Instance",
                                     vpc=self.vpc,
                                     instance_type=compute.instance_type,
                                     machine_image=ec2.MachineImage.latest_amazon_linux2023(),
                                     vpc_subnets=ec2.SubnetSelection(subnet_type=compute.subnet_type),
                                     security_group=self.ec2_security_group,
                                     ssm_session_permissions=compute.ssm_session_permissions)

        self.database = None
        self.rds_security_group = None
        if self.topology.database is not None:
            self.database = self._declare_database(self.topology.database)

        values = {
            "InstancePublicIp": self.instance.instance_public_ip,
            "InstanceId": self.instance.instance_id,
        }
        if self.database is not None:
            values["RdsEndpoint"] = self.database.db_instance_endpoint_address
            values["RdsSecretArn"] = self.database.secret.secret_arn if self.database.secret else "N/A"

        for output in self.topology.outputs:
            CfnOutput(self, output.name, value=values[output.name], description=output.description)

    def _declare_database(self, intent: DatabaseIntent) -> rds.DatabaseInstance:
        logger.info("Declaring PostgreSQL database %s (%s, %d GB)",
                    intent.database_name, intent.instance_type.to_string(), intent.allocated_storage)

        self.rds_security_group = ec2.SecurityGroup(self, "RdsSecurityGroup",
                                                    vpc=self.vpc,
                                                    description="Security group for RDS instance - only accessible from EC2",
                                                    allow_all_outbound=intent.allow_all_outbound)

        peers = {COMPUTE_SECURITY_GROUP: self.ec2_security_group}

        # Only security groups declared in this stack may reach the database, never a CIDR
        for rule in intent.ingress:
            self.rds_security_group.add_ingress_rule(peer=peers[rule.source_security_group],
                                                     connection=ec2.Port.tcp(rule.port),
                                                     description=rule.description)

        return rds.DatabaseInstance(self, "Database",
                                    engine=rds.DatabaseInstanceEngine.postgres(
                                        version=rds.PostgresEngineVersion.VER_16),
                                    instance_type=intent.instance_type,
                                    vpc=self.vpc,
                                    vpc_subnets=ec2.SubnetSelection(subnet_type=intent.subnet_type),
                                    security_groups=[self.rds_security_group],
                                    database_name=intent.database_name,
                                    port=intent.port,
                                    allocated_storage=intent.allocated_storage,
                                    max_allocated_storage=intent.max_allocated_storage,
                                    credentials=rds.Credentials.from_generated_secret(intent.username),
                                    # Development template, nothing survives a stack delete
                                    removal_policy=RemovalPolicy.DESTROY,
                                    delete_automated_backups=True)
