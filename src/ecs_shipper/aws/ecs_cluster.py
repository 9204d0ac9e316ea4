"""ECS cluster management."""
import logging
from typing import Dict, Any, Optional
from botocore.exceptions import ClientError

from ecs_shipper.aws.clients import get_ecs_client, error_code
from ecs_shipper.settings import Settings
from ecs_shipper.stack import ClusterSpec

logger = logging.getLogger(__name__)


class ECSClusterManager:
    """Manager for the ECS cluster a service runs in."""

    def __init__(self, cluster_name: str, settings: Optional[Settings] = None):
        self.cluster_name = cluster_name
        self.ecs_client = get_ecs_client(settings)
        self.cluster_arn = None

    def find_cluster(self) -> Optional[Dict[str, Any]]:
        """Find the ACTIVE cluster, or None."""
        response = self.ecs_client.describe_clusters(clusters=[self.cluster_name])
        for cluster in response.get('clusters', []):
            if cluster['status'] == 'ACTIVE':
                self.cluster_arn = cluster['clusterArn']
                return cluster
        return None

    def ensure_cluster(self, spec: ClusterSpec, tags: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Create the ECS cluster unless an ACTIVE one already exists."""
        existing_cluster = self.find_cluster()
        if existing_cluster:
            logger.info(f"Using existing ECS cluster: {self.cluster_name}")
            return existing_cluster

        try:
            cluster_response = self.ecs_client.create_cluster(
                clusterName=spec.name,
                tags=[{'key': key, 'value': value} for key, value in (tags or {}).items()],
                settings=[
                    {
                        'name': 'containerInsights',
                        'value': 'enabled' if spec.container_insights else 'disabled'
                    }
                ]
            )
        except ClientError as e:
            logger.error(f"Failed to create ECS cluster: {e}")
            raise

        self.cluster_arn = cluster_response['cluster']['clusterArn']
        logger.info(f"Created ECS cluster: {self.cluster_name}")
        return cluster_response['cluster']

    def delete_cluster(self) -> bool:
        """Delete the cluster. Returns False when it was already gone."""
        if not self.find_cluster():
            logger.info(f"ECS cluster {self.cluster_name} not found")
            return False
        try:
            self.ecs_client.delete_cluster(cluster=self.cluster_name)
        except ClientError as e:
            if error_code(e) == 'ClusterNotFoundException':
                return False
            logger.error(f"Failed to delete cluster {self.cluster_name}: {e}")
            raise
        logger.info(f"Deleted ECS cluster: {self.cluster_name}")
        return True

