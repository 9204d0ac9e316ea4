pytest_plugins = [
    "tests.fixtures.mocked_aws",
]
