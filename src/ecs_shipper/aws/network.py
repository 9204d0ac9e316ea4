"""Subnet and security group resolution for awsvpc tasks."""
import logging
from typing import Dict, Any, List, Optional
from botocore.exceptions import ClientError

from ecs_shipper.aws.clients import get_ec2_client, error_code
from ecs_shipper.settings import Settings
from ecs_shipper.errors import ConfigurationError

logger = logging.getLogger(__name__)


class NetworkResolver:
    """Resolves the subnets and security groups a service runs in.

    Explicit IDs always win. Without them the default VPC is used: its
    default-for-AZ subnets, and a security group named after the app that
    allows TCP ingress on the container port.
    """

    def __init__(self, app_name: str, container_port: int, settings: Optional[Settings] = None):
        self.app_name = app_name
        self.container_port = container_port
        self.security_group_name = f"{app_name}-sg"
        self.ec2_client = get_ec2_client(settings)

    def find_default_vpc(self) -> str:
        vpcs = self.ec2_client.describe_vpcs(
            Filters=[{'Name': 'isDefault', 'Values': ['true']}]
        )['Vpcs']
        if not vpcs:
            raise ConfigurationError("No default VPC found; set SUBNET_IDS and SECURITY_GROUP_IDS")
        return vpcs[0]['VpcId']

    def find_default_subnets(self, vpc_id: str) -> List[str]:
        subnets = self.ec2_client.describe_subnets(
            Filters=[
                {'Name': 'vpc-id', 'Values': [vpc_id]},
                {'Name': 'default-for-az', 'Values': ['true']},
            ]
        )['Subnets']
        if not subnets:
            raise ConfigurationError(f"VPC {vpc_id} has no default subnets; set SUBNET_IDS")
        subnet_ids = sorted(s['SubnetId'] for s in subnets)
        logger.info(f"Default VPC: {vpc_id}, Subnets: {subnet_ids}")
        return subnet_ids

    def vpc_of_subnet(self, subnet_id: str) -> str:
        subnets = self.ec2_client.describe_subnets(SubnetIds=[subnet_id])['Subnets']
        return subnets[0]['VpcId']

    def find_security_group(self, vpc_id: str) -> Optional[str]:
        response = self.ec2_client.describe_security_groups(
            Filters=[
                {'Name': 'group-name', 'Values': [self.security_group_name]},
                {'Name': 'vpc-id', 'Values': [vpc_id]},
            ]
        )
        groups = response.get('SecurityGroups', [])
        return groups[0]['GroupId'] if groups else None

    def ensure_security_group(self, vpc_id: str) -> str:
        """Create or reuse the app security group and open the container port."""
        group_id = self.find_security_group(vpc_id)
        if group_id:
            logger.info(f"Using existing security group: {self.security_group_name} ({group_id})")
        else:
            response = self.ec2_client.create_security_group(
                GroupName=self.security_group_name,
                Description=f"{self.app_name} service",
                VpcId=vpc_id,
            )
            group_id = response['GroupId']
            logger.info(f"Created security group: {self.security_group_name} ({group_id})")

        try:
            self.ec2_client.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[{
                    'IpProtocol': 'tcp',
                    'FromPort': self.container_port,
                    'ToPort': self.container_port,
                    'IpRanges': [{'CidrIp': '0.0.0.0/0',
                                  'Description': f"Port {self.container_port} access"}]
                }]
            )
        except ClientError as e:
            if error_code(e) != 'InvalidPermission.Duplicate':
                raise
        return group_id

    def resolve(self, subnets: List[str], security_groups: List[str],
                create: bool = True) -> Dict[str, Any]:
        """Resolve the awsvpc configuration.

        Args:
            subnets: explicit subnet IDs (may be empty)
            security_groups: explicit security group IDs (may be empty)
            create: when False, a missing managed security group is reported as None

        Returns:
            Dict with vpc_id, subnets and security_groups
        """
        if subnets:
            vpc_id = self.vpc_of_subnet(subnets[0])
            resolved_subnets = list(subnets)
        else:
            vpc_id = self.find_default_vpc()
            resolved_subnets = self.find_default_subnets(vpc_id)

        if security_groups:
            resolved_groups = list(security_groups)
        elif create:
            resolved_groups = [self.ensure_security_group(vpc_id)]
        else:
            group_id = self.find_security_group(vpc_id)
            resolved_groups = [group_id] if group_id else []

        return {
            'vpc_id': vpc_id,
            'subnets': resolved_subnets,
            'security_groups': resolved_groups,
        }
