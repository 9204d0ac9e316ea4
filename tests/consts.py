TEST_REGION = "us-east-1"
TEST_ACCOUNT_ID = "123456789012"
TEST_REPO_NAME = "test-app"
TEST_CLUSTER_NAME = "test-cluster"
TEST_SERVICE_NAME = "test-service"
TEST_TASK_FAMILY = "test-task"
TEST_CONTAINER_NAME = "test-app"
TEST_APP_NAME = "test-app"
