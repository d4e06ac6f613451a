"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import List, Optional
from unittest import mock
import copy
import inspect
import os
import uuid

# First Party
import aconfig
import alog

# Local
from dbaas_platform import constants
from dbaas_platform.config import library_config as config_detail_dict
from dbaas_platform.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from dbaas_platform.platforms import PlatformConfig, PlatformType
from dbaas_platform.reconcilers.base import PlatformReconciler
from dbaas_platform.session import Session
from dbaas_platform.status import InstallStatus
from dbaas_platform.utils import to_plain_dict

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = "dbaas-platform"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
TEST_CATALOG_NAMESPACE = "test-marketplace"
TEST_INSTALL_NAMESPACE = "test-operators"


def setup_cr(
    kind=constants.PLATFORM_KIND,
    api_version=constants.PLATFORM_API_VERSION,
    spec=None,
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    **kwargs,
):
    cr_dict = kwargs or {}
    cr_dict.setdefault("kind", kind)
    cr_dict.setdefault("apiVersion", api_version)
    cr_dict.setdefault("metadata", {}).setdefault("name", name)
    cr_dict.setdefault("metadata", {}).setdefault("namespace", namespace)
    cr_dict.setdefault("metadata", {}).setdefault("uid", TEST_INSTANCE_UID)
    cr_dict.setdefault("spec", {}).update(copy.deepcopy(spec or {}))
    return aconfig.Config(cr_dict, override_env_vars=False)


def setup_session(
    full_cr=None,
    deploy_manager=None,
    namespace=TEST_NAMESPACE,
    deploy_initial_cr=True,
    spec=None,
    **kwargs,
):
    full_cr = full_cr or setup_cr(namespace=namespace, spec=spec)
    if not deploy_manager:
        deploy_manager = (
            MockDeployManager(resources=[full_cr])
            if deploy_initial_cr
            else MockDeployManager()
        )

    return Session(
        reconciliation_id=str(uuid.uuid4()),
        cr_manifest=full_cr,
        deploy_manager=deploy_manager,
        **kwargs,
    )


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield

    # Revert to the old values
    finally:
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        log.debug4(
            "Running failable mock of [%s] with fail flag: %s", str(method), fail_flag
        )
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        elif callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag == "assert":
            log.debug4("Asserting in failable mock")
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        res = method(*args, **kwargs)
        log.debug4("Passthrough res: %s", res)
        return res

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call. If a kind is
    given, only calls writing that kind are counted.
    """

    def __init__(self, fail_val, fail_number=1, kind=None):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val
        self.kind = kind

    def __call__(self, *args, **__):
        if self.kind is not None and not _writes_kind(args, self.kind):
            return None
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


def _writes_kind(args, kind) -> bool:
    resources = args[0] if args else []
    return any(resource.get("kind") == kind for resource in resources)


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(
        self,
        deploy_fail=False,
        deploy_raise=False,
        disable_fail=False,
        disable_raise=False,
        get_state_fail=False,
        get_state_raise=False,
        filter_fail=False,
        filter_raise=False,
        set_status_fail=False,
        set_status_raise=False,
        auto_enable=True,
        resources=None,
        **kwargs,
    ):
        """This DeployManager can be configured to have various failure cases
        and will mock the state of the cluster so that get_object_current_state
        will pull its information from the local dict.
        """

        # Add apiVersion to resources that are missing it, then initialize the
        # dry run manager
        resources = [to_plain_dict(resource) for resource in resources or []]
        for resource in resources:
            resource.setdefault("apiVersion", "v1")
        super().__init__(resources, **kwargs)

        self.deploy_fail = "assert" if deploy_raise else deploy_fail
        self.disable_fail = "assert" if disable_raise else disable_fail
        self.get_state_fail = "assert" if get_state_raise else get_state_fail
        self.filter_fail = "assert" if filter_raise else filter_fail
        self.set_status_fail = "assert" if set_status_raise else set_status_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.deploy = mock.Mock(
            side_effect=get_failable_method(
                self.deploy_fail, super().deploy, (False, False)
            )
        )
        self.disable = mock.Mock(
            side_effect=get_failable_method(
                self.disable_fail, super().disable, (False, False)
            )
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.filter_fail, super().filter_objects_current_state, (False, [])
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )

    def reset_mocks(self):
        """Clear the call history of every mocked operation"""
        for method in [
            self.deploy,
            self.disable,
            self.get_object_current_state,
            self.filter_objects_current_state,
            self.set_status,
        ]:
            method.reset_mock()

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return self.get_object_current_state(kind, name, namespace, api_version)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def set_obj_status(self, kind, name, namespace, status, api_version=None):
        """Simulate another actor (e.g. a controller in the cluster) writing
        the status of an object
        """
        success, _ = DryRunDeployManager.set_status(
            self, kind, name, namespace, status, api_version
        )
        assert success, f"Cannot set status of missing {kind}/{name}"

    def write_calls(self, kind: Optional[str] = None) -> List[dict]:
        """Every resource passed to deploy, optionally only of the given kind"""
        written = []
        for call in self.deploy.call_args_list:
            for resource in call.args[0]:
                if kind is None or resource.get("kind") == kind:
                    written.append(resource)
        return written


## Platforms ###################################################################


def make_platform(name="test-platform", platform_type=PlatformType.OPERATOR, **kwargs):
    """Make a platform descriptor with defaults suitable for its type"""
    kwargs.setdefault("display_name", f"{name} display")
    kwargs.setdefault("catalog_namespace", TEST_CATALOG_NAMESPACE)
    kwargs.setdefault("install_namespace", TEST_INSTALL_NAMESPACE)
    if platform_type in [PlatformType.OPERATOR, PlatformType.SERVICE_BINDING]:
        kwargs.setdefault("package_name", f"{name}-package")
        kwargs.setdefault("channel", "alpha")
        kwargs.setdefault("deployment_name", f"{name}-controller-manager")
    if platform_type in [PlatformType.OPERATOR, PlatformType.CONSOLE_PLUGIN]:
        kwargs.setdefault("image", f"quay.io/test/{name}:latest")
    if platform_type == PlatformType.SERVICE_BINDING:
        kwargs.setdefault("catalog_source", "redhat-operators")
    return PlatformConfig(name=name, type=platform_type, **kwargs)


def make_deployment(
    name, namespace=TEST_NAMESPACE, replicas=1, ready_replicas=None
) -> dict:
    """Make a Deployment as it would appear once the cluster reports on it"""
    deployment = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"replicas": replicas},
        "status": {"replicas": replicas},
    }
    if ready_replicas is not None:
        deployment["status"]["readyReplicas"] = ready_replicas
    return deployment


class DummyReconciler(PlatformReconciler):
    """Reconciler whose install and cleanup steps return scripted statuses.
    Each call pops the next status; the last one repeats.
    """

    def __init__(
        self,
        name="dummy",
        install_results=None,
        cleanup_results=None,
        install_error=None,
        cleanup_error=None,
    ):
        super().__init__(make_platform(name, PlatformType.QUICK_START))
        self.install_results = list(install_results or [InstallStatus.SUCCESS])
        self.cleanup_results = list(cleanup_results or [InstallStatus.SUCCESS])
        self.install_error = install_error
        self.cleanup_error = cleanup_error
        self.install_calls = 0
        self.cleanup_calls = 0

    def install_steps(self):
        return [self.install]

    def cleanup_steps(self):
        return [self.uninstall]

    def install(self, _session):
        self.install_calls += 1
        if self.install_error is not None:
            raise self.install_error
        return _next_result(self.install_results)

    def uninstall(self, _session):
        self.cleanup_calls += 1
        if self.cleanup_error is not None:
            raise self.cleanup_error
        return _next_result(self.cleanup_results)


def _next_result(results):
    if len(results) > 1:
        return results.pop(0)
    return results[0]
