import json
import typing

import aws_cdk as cdk
import pytest
from aws_cdk.assertions import Match, Template

from minimalist_cdk_template.config import StackConfiguration, resolve_config
from minimalist_cdk_template.minimalist_cdk_template_stack import MinimalistCdkTemplateStack


def synth(context=None):
    app = cdk.App()
    stack = MinimalistCdkTemplateStack(app, "TestStack", config=resolve_config(context or {}))
    return stack, Template.from_stack(stack)


@pytest.fixture(scope="module")
def template():
    return synth()[1]


def test_vpc_is_created(template):
    template.has_resource_properties("AWS::EC2::VPC", {
        "CidrBlock": "10.0.0.0/16",
        "EnableDnsHostnames": True,
        "EnableDnsSupport": True,
    })


def test_public_and_private_subnet_per_az(template):
    # Environment-agnostic stacks see two AZs
    template.resource_count_is("AWS::EC2::Subnet", 4)
    template.has_resource_properties("AWS::EC2::Subnet", {"MapPublicIpOnLaunch": True})
    template.has_resource_properties("AWS::EC2::Subnet", {"MapPublicIpOnLaunch": False})


def test_no_nat_gateway(template):
    template.resource_count_is("AWS::EC2::NatGateway", 0)


def test_instance_defaults_to_t3_micro(template):
    template.has_resource_properties("AWS::EC2::Instance", {
        "InstanceType": "t3.micro",
        "SubnetId": Match.any_value(),
    })


def test_security_group_allows_ssh_from_anywhere_by_default(template):
    template.has_resource_properties("AWS::EC2::SecurityGroup", {
        "SecurityGroupIngress": Match.array_with([
            Match.object_like({
                "IpProtocol": "tcp",
                "FromPort": 22,
                "ToPort": 22,
                "CidrIp": "0.0.0.0/0",
            }),
        ]),
    })


def test_custom_ssh_cidr():
    _, template = synth({"sshCidr": "10.0.0.0/8"})

    template.has_resource_properties("AWS::EC2::SecurityGroup", {
        "SecurityGroupIngress": [
            Match.object_like({
                "IpProtocol": "tcp",
                "FromPort": 22,
                "ToPort": 22,
                "CidrIp": "10.0.0.0/8",
            }),
        ],
    })
    ingress = [rule
               for group in template.find_resources("AWS::EC2::SecurityGroup").values()
               for rule in group["Properties"].get("SecurityGroupIngress", [])]
    assert [rule["CidrIp"] for rule in ingress] == ["10.0.0.0/8"]


def test_custom_instance_type():
    _, template = synth({"ec2InstanceClass": "t2", "ec2InstanceSize": "small"})
    template.has_resource_properties("AWS::EC2::Instance", {"InstanceType": "t2.small"})


def test_bogus_instance_class_synthesizes_default():
    _, template = synth({"ec2InstanceClass": "bogus"})
    template.has_resource_properties("AWS::EC2::Instance", {"InstanceType": "t3.micro"})


def test_ssm_access_opens_no_inbound_cidr():
    _, template = synth({"accessMode": "ssm"})

    for group in template.find_resources("AWS::EC2::SecurityGroup").values():
        assert "SecurityGroupIngress" not in group["Properties"]
    assert "AmazonSSMManagedInstanceCore" in json.dumps(template.to_json())


def test_database_is_postgres_in_isolated_subnets(template):
    template.has_resource_properties("AWS::RDS::DBInstance", {
        "Engine": "postgres",
        "DBInstanceClass": "db.t3.micro",
        "DBName": "appdb",
        "AllocatedStorage": "20",
        "MaxAllocatedStorage": 20,
        "DeleteAutomatedBackups": True,
    })
    template.has_resource("AWS::RDS::DBInstance", {"DeletionPolicy": "Delete"})
    template.resource_count_is("AWS::RDS::DBSubnetGroup", 1)
    template.resource_count_is("AWS::SecretsManager::Secret", 1)


def test_database_only_reachable_from_instance_security_group(template):
    template.resource_count_is("AWS::EC2::SecurityGroupIngress", 1)
    template.has_resource_properties("AWS::EC2::SecurityGroupIngress", {
        "IpProtocol": "tcp",
        "FromPort": 5432,
        "ToPort": 5432,
        "SourceSecurityGroupId": Match.any_value(),
        "CidrIp": Match.absent(),
    })


def test_small_storage_is_clamped():
    _, template = synth({"allocatedStorage": "5"})
    template.has_resource_properties("AWS::RDS::DBInstance", {
        "AllocatedStorage": "20",
        "MaxAllocatedStorage": 20,
    })


def test_larger_storage_sets_ceiling():
    _, template = synth({"allocatedStorage": "100", "rdsInstanceClass": "m5", "rdsInstanceSize": "large"})
    template.has_resource_properties("AWS::RDS::DBInstance", {
        "DBInstanceClass": "db.m5.large",
        "AllocatedStorage": "100",
        "MaxAllocatedStorage": 100,
    })


def test_outputs_with_database(template):
    for name in ("InstancePublicIp", "InstanceId", "RdsEndpoint", "RdsSecretArn"):
        template.has_output(name, {})


def test_without_database():
    stack, template = synth({"enableDatabase": "false", "maxAzs": "1"})

    assert stack.database is None
    template.resource_count_is("AWS::RDS::DBInstance", 0)
    template.resource_count_is("AWS::SecretsManager::Secret", 0)
    template.resource_count_is("AWS::EC2::Subnet", 2)
    assert template.find_outputs("RdsEndpoint") == {}
    template.has_output("InstanceId", {})


def test_malformed_ssh_cidr_is_rejected_by_cdk():
    with pytest.raises(Exception):
        synth({"sshCidr": "not-a-cidr"})


def test_stack_without_config_uses_defaults():
    stack = MinimalistCdkTemplateStack(cdk.App(), "DefaultStack")
    assert stack.config == resolve_config({})
    assert stack.database is not None


def test_database_ingress_source_is_the_instance_security_group():
    stack, template = synth()
    ec2_group = stack.get_logical_id(stack.ec2_security_group.node.default_child)
    rds_group = stack.get_logical_id(stack.rds_security_group.node.default_child)

    template.has_resource_properties("AWS::EC2::SecurityGroupIngress", {
        "GroupId": {"Fn::GetAtt": [rds_group, "GroupId"]},
        "SourceSecurityGroupId": {"Fn::GetAtt": [ec2_group, "GroupId"]},
        "FromPort": 5432,
    })


def test_config_parameter_is_optional():
    hints = typing.get_type_hints(MinimalistCdkTemplateStack.__init__)
    assert hints["config"] == typing.Optional[StackConfiguration]
