from pytest import register_assert_rewrite

register_assert_rewrite("tests.fixtures")

pytest_plugins = [
    "celery.contrib.pytest",
    "tests.fixtures.celery",
    "tests.fixtures.circulation",
    "tests.fixtures.database",
    "tests.fixtures.services",
]
