"""
Shared module to hold constant values for the library
"""

# Parent installation object identity
PLATFORM_GROUP = "dbaas.redhat.com"
PLATFORM_API_VERSION = f"{PLATFORM_GROUP}/v1beta1"
PLATFORM_KIND = "DBaaSPlatform"

# Labels applied to objects created on behalf of the operator
MANAGED_BY_LABEL = "managed-by"
MANAGED_BY_VALUE = "dbaas-operator"

# Log config annotations
LOG_DEFAULT_LEVEL_NAME = "dbaas.redhat.com/log-default-level"
LOG_FILTERS_NAME = "dbaas.redhat.com/log-filters"
LOG_THREAD_ID_NAME = "dbaas.redhat.com/log-thread-id"
LOG_JSON_NAME = "dbaas.redhat.com/log-json"

# OLM kinds
OLM_API_VERSION = "operators.coreos.com/v1alpha1"
OPERATOR_GROUP_API_VERSION = "operators.coreos.com/v1"
CATALOG_SOURCE_KIND = "CatalogSource"
SUBSCRIPTION_KIND = "Subscription"
OPERATOR_GROUP_KIND = "OperatorGroup"
CSV_KIND = "ClusterServiceVersion"

# Name of the operator group shared by all package-managed components
GLOBAL_OPERATOR_GROUP = "global-operators"

# Environment variable used to propagate the sync period to provider operators
SYNC_PERIOD_ENV = "SYNC_PERIOD_MIN"

# Bounds for spec.syncPeriod (minutes)
MIN_SYNC_PERIOD = 1
MAX_SYNC_PERIOD = 1440

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
