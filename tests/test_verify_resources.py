"""
Tests for the verification functions
"""

# Third Party
import pytest

# Local
from dbaas_platform import verify_resources
from dbaas_platform.test_helpers.helpers import make_deployment


def make_console(conditions):
    return {
        "apiVersion": "operator.openshift.io/v1",
        "kind": "Console",
        "metadata": {"name": "cluster"},
        "status": {"conditions": conditions},
    }


## verify_deployment_started ###################################################


@pytest.mark.parametrize(
    ["deployment", "expected"],
    [
        [None, False],
        [make_deployment("op"), False],
        [make_deployment("op", ready_replicas=0), False],
        [make_deployment("op", ready_replicas=1), True],
        [make_deployment("op", replicas=3, ready_replicas=1), True],
    ],
)
def test_verify_deployment_started(deployment, expected):
    assert verify_resources.verify_deployment_started(deployment) == expected


## verify_deployment_rolled_out ################################################


@pytest.mark.parametrize(
    ["deployment", "expected"],
    [
        [None, False],
        [make_deployment("plugin", replicas=3, ready_replicas=3), True],
        [make_deployment("plugin", replicas=3, ready_replicas=2), False],
        [make_deployment("plugin", replicas=3), False],
        [make_deployment("plugin", replicas=0, ready_replicas=0), False],
        [{"kind": "Deployment", "metadata": {"name": "plugin"}}, False],
    ],
)
def test_verify_deployment_rolled_out(deployment, expected):
    """Make sure a rollout is only complete when every reported replica is
    ready and at least one replica is reported
    """
    assert verify_resources.verify_deployment_rolled_out(deployment) == expected


## verify_console_deployment_available #########################################


def test_verify_console_available():
    console = make_console(
        [{"type": "DeploymentAvailable", "status": "True", "reason": "AsExpected"}]
    )
    assert verify_resources.verify_console_deployment_available(console)


def test_verify_console_not_available():
    console = make_console([{"type": "DeploymentAvailable", "status": "False"}])
    assert not verify_resources.verify_console_deployment_available(console)
    assert not verify_resources.verify_console_deployment_available(make_console([]))
    assert not verify_resources.verify_console_deployment_available(None)


## verify_condition ############################################################


def test_verify_condition_uses_latest():
    """Make sure the newest condition of a type wins"""
    obj = make_console(
        [
            {
                "type": "DeploymentAvailable",
                "status": "True",
                "lastTransitionTime": "2023-01-01T00:00:00Z",
            },
            {
                "type": "DeploymentAvailable",
                "status": "False",
                "lastTransitionTime": "2023-06-01T00:00:00Z",
            },
        ]
    )
    assert not verify_resources.verify_condition(obj, "DeploymentAvailable", True)
    assert verify_resources.verify_condition(obj, "DeploymentAvailable", False)


def test_verify_condition_reason():
    """Make sure the expected reason is checked when given"""
    obj = make_console(
        [{"type": "Ready", "status": True, "reason": "Done"}],
    )
    assert verify_resources.verify_condition(obj, "Ready", True, expected_reason="Done")
    assert not verify_resources.verify_condition(
        obj, "Ready", True, expected_reason="Other"
    )
