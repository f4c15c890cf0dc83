import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from aws_cdk import Environment
from aws_cdk import aws_ec2 as ec2

DEFAULT_STACK_NAME = "MinimalistCdkTemplateStack"
DEFAULT_REGION = "eu-west-2"
DEFAULT_DATABASE_NAME = "appdb"
DEFAULT_VPC_CIDR = "10.0.0.0/16"
DEFAULT_SSH_CIDR = "0.0.0.0/0"

# Smallest storage RDS accepts for the free tier
MIN_ALLOCATED_STORAGE = 20
# A DB subnet group needs subnets in at least two AZs
MIN_AZS_WITH_DATABASE = 2
MIN_AZS_WITHOUT_DATABASE = 1
DEFAULT_MAX_AZS = 2

ACCESS_SSH = "ssh"
ACCESS_SSM = "ssm"
ACCESS_MODES = (ACCESS_SSH, ACCESS_SSM)

DEFAULT_INSTANCE_CLASS = ec2.InstanceClass.T3
DEFAULT_INSTANCE_SIZE = ec2.InstanceSize.MICRO

INSTANCE_CLASSES = {
    "T2": ec2.InstanceClass.T2,
    "T3": ec2.InstanceClass.T3,
    "T3A": ec2.InstanceClass.T3A,
    "M5": ec2.InstanceClass.M5,
    "M6I": ec2.InstanceClass.M6I,
    "C5": ec2.InstanceClass.C5,
    "C6I": ec2.InstanceClass.C6I,
    "R5": ec2.InstanceClass.R5,
    "R6I": ec2.InstanceClass.R6I,
}

INSTANCE_SIZES = {
    "MICRO": ec2.InstanceSize.MICRO,
    "SMALL": ec2.InstanceSize.SMALL,
    "MEDIUM": ec2.InstanceSize.MEDIUM,
    "LARGE": ec2.InstanceSize.LARGE,
    "XLARGE": ec2.InstanceSize.XLARGE,
    "XLARGE2": ec2.InstanceSize.XLARGE2,
    "XLARGE4": ec2.InstanceSize.XLARGE4,
}

_TRUE_WORDS = {"true", "yes", "1", "on"}
_FALSE_WORDS = {"false", "no", "0", "off"}

_LEADING_INT = re.compile(r"\s*([+-]?\d+)", re.ASCII)

# Every context key the app reads
CONTEXT_KEYS = (
    "stackName",
    "region",
    "account",
    "ec2InstanceClass",
    "ec2InstanceSize",
    "rdsInstanceClass",
    "rdsInstanceSize",
    "databaseName",
    "allocatedStorage",
    "vpcCidr",
    "maxAzs",
    "sshCidr",
    "accessMode",
    "enableDatabase",
)


@dataclass(frozen=True)
class StackConfiguration:
    stack_name: str = DEFAULT_STACK_NAME
    region: str = DEFAULT_REGION
    account: Optional[str] = None
    ec2_instance_class: ec2.InstanceClass = DEFAULT_INSTANCE_CLASS
    ec2_instance_size: ec2.InstanceSize = DEFAULT_INSTANCE_SIZE
    rds_instance_class: ec2.InstanceClass = DEFAULT_INSTANCE_CLASS
    rds_instance_size: ec2.InstanceSize = DEFAULT_INSTANCE_SIZE
    database_name: str = DEFAULT_DATABASE_NAME
    allocated_storage: int = MIN_ALLOCATED_STORAGE
    vpc_cidr: str = DEFAULT_VPC_CIDR
    max_azs: int = DEFAULT_MAX_AZS
    ssh_cidr: str = DEFAULT_SSH_CIDR
    access_mode: str = ACCESS_SSH
    enable_database: bool = True

    @property
    def ec2_instance_type(self) -> ec2.InstanceType:
        return ec2.InstanceType.of(self.ec2_instance_class, self.ec2_instance_size)

    @property
    def rds_instance_type(self) -> ec2.InstanceType:
        return ec2.InstanceType.of(self.rds_instance_class, self.rds_instance_size)

    @property
    def env(self) -> Environment:
        # account=None leaves the stack account-agnostic
        return Environment(account=self.account, region=self.region)


def parse_int_with_floor(raw: Any, floor: int, default: Optional[int] = None) -> int:
    """Parse a base-10 integer, clamping bad or too-small input to ``floor``.

    Missing input gives ``default`` (or ``floor`` when no default is set).
    """
    if raw is None or raw == "":
        return floor if default is None else max(default, floor)
    if isinstance(raw, bool):
        return floor
    # Leading ASCII digits only, trailing text is ignored ("50GB" -> 50)
    match = _LEADING_INT.match(str(raw))
    if match is None:
        return floor
    value = int(match.group(1))
    return value if value >= floor else floor


def parse_bool(raw: Any, default: bool) -> bool:
    if isinstance(raw, bool):
        return raw
    if raw is None:
        return default
    word = str(raw).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    return default


def get_instance_class(name: Any) -> ec2.InstanceClass:
    if name is None:
        return DEFAULT_INSTANCE_CLASS
    return INSTANCE_CLASSES.get(str(name).upper(), DEFAULT_INSTANCE_CLASS)


def get_instance_size(name: Any) -> ec2.InstanceSize:
    if name is None:
        return DEFAULT_INSTANCE_SIZE
    return INSTANCE_SIZES.get(str(name).upper(), DEFAULT_INSTANCE_SIZE)


def _string_or_default(raw: Any, default: Optional[str]) -> Optional[str]:
    if raw is None or raw == "":
        return default
    return str(raw)


def _access_mode(raw: Any) -> str:
    if raw is None:
        return ACCESS_SSH
    mode = str(raw).strip().lower()
    return mode if mode in ACCESS_MODES else ACCESS_SSH


def resolve_config(context: Mapping[str, Any]) -> StackConfiguration:
    """Build a StackConfiguration from raw context values.

    Never raises: unparseable or out-of-range values fall back to their
    floor or default. CIDR strings are not checked here, CDK rejects
    malformed ones when the stack is synthesized.
    """
    enable_database = parse_bool(context.get("enableDatabase"), True)
    min_azs = MIN_AZS_WITH_DATABASE if enable_database else MIN_AZS_WITHOUT_DATABASE

    return StackConfiguration(
        stack_name=_string_or_default(context.get("stackName"), DEFAULT_STACK_NAME),
        region=_string_or_default(context.get("region"), DEFAULT_REGION),
        account=_string_or_default(context.get("account"), None),
        ec2_instance_class=get_instance_class(context.get("ec2InstanceClass")),
        ec2_instance_size=get_instance_size(context.get("ec2InstanceSize")),
        rds_instance_class=get_instance_class(context.get("rdsInstanceClass")),
        rds_instance_size=get_instance_size(context.get("rdsInstanceSize")),
        database_name=_string_or_default(context.get("databaseName"), DEFAULT_DATABASE_NAME),
        allocated_storage=parse_int_with_floor(context.get("allocatedStorage"), MIN_ALLOCATED_STORAGE),
        vpc_cidr=_string_or_default(context.get("vpcCidr"), DEFAULT_VPC_CIDR),
        max_azs=parse_int_with_floor(context.get("maxAzs"), min_azs, DEFAULT_MAX_AZS),
        ssh_cidr=_string_or_default(context.get("sshCidr"), DEFAULT_SSH_CIDR),
        access_mode=_access_mode(context.get("accessMode")),
        enable_database=enable_database,
    )
