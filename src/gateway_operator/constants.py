"""Constants for the Gateway Operator."""

# API Groups
API_GROUP = "gateway-operator.konghq.com"
GATEWAY_API_GROUP = "gateway.networking.k8s.io"

# Resource Kinds
KIND_GATEWAY = "Gateway"
KIND_GATEWAY_CLASS = "GatewayClass"
KIND_GATEWAY_CONFIGURATION = "GatewayConfiguration"
KIND_CONTROL_PLANE = "ControlPlane"
KIND_DATA_PLANE = "DataPlane"

# Controller identity
DEFAULT_CONTROLLER_NAME = "konghq.com/gateway-operator"

# Labels
LABEL_MANAGED = "konghq.com/gateway-operator"
LABEL_VALUE_CONTROL_PLANE = "controlplane"
LABEL_VALUE_DATA_PLANE = "dataplane"
LABEL_VALUE_GATEWAY = "gateway"
LABEL_DATA_PLANE_SERVICE_TYPE = f"{API_GROUP}/dataplane-service-type"
LABEL_VALUE_PROXY_SERVICE = "proxy"
LABEL_OWNER_UID = f"{API_GROUP}/owner-uid"
LABEL_OWNER_NAME = f"{API_GROUP}/owner-name"
LABEL_OWNER_NAMESPACE = f"{API_GROUP}/owner-namespace"
LABEL_APP = "app"
LABEL_NAMESPACE_NAME = "kubernetes.io/metadata.name"

# Annotations
ANNOTATION_MANAGED_ENV = f"{API_GROUP}/managed-env"
ANNOTATION_RECONCILE_TRIGGER = f"{API_GROUP}/reconcile-trigger"

# Finalizers
FINALIZER_CLEANUP_CLUSTER_ROLE = f"{API_GROUP}/cleanup-clusterrole"
FINALIZER_CLEANUP_CLUSTER_ROLE_BINDING = f"{API_GROUP}/cleanup-clusterrolebinding"
FINALIZER_CLEANUP_DATA_PLANES = f"{API_GROUP}/cleanup-dataplanes"
FINALIZER_CLEANUP_CONTROL_PLANES = f"{API_GROUP}/cleanup-controlplanes"
FINALIZER_CLEANUP_NETWORK_POLICIES = f"{API_GROUP}/cleanup-network-policies"

# Condition Types
COND_READY = "Ready"
COND_PROGRAMMED = "Programmed"
COND_ACCEPTED = "Accepted"
COND_SCHEDULED = "Scheduled"
COND_PROVISIONED = "Provisioned"
COND_DATA_PLANE_READY = "DataPlaneReady"
COND_CONTROL_PLANE_READY = "ControlPlaneReady"
COND_GATEWAY_SERVICE = "GatewayService"

# Condition Reasons
REASON_READY = "Ready"
REASON_PROGRAMMED = "Programmed"
REASON_PENDING = "Pending"
REASON_ACCEPTED = "Accepted"
REASON_DEPENDENCIES_NOT_READY = "DependenciesNotReady"
REASON_WAITING_TO_BECOME_READY = "WaitingToBecomeReady"
REASON_RESOURCE_CREATED_OR_UPDATED = "ResourceCreatedOrUpdated"
REASON_UNABLE_TO_PROVISION = "UnableToProvision"
REASON_GATEWAY_SERVICE_ERROR = "GatewayServiceError"
REASON_INVALID_PARAMETERS = "InvalidParameters"
REASON_POD_SCHEDULED = "PodsScheduled"
REASON_NO_DATA_PLANE = "NoDataPlane"
REASON_PODS_NOT_READY = "PodsNotReady"
REASON_PODS_READY = "PodsReady"

# Condition Messages
MESSAGE_DEPENDENCIES_NOT_READY = "There are other conditions that are not yet ready"
MESSAGE_WAITING_TO_BECOME_READY = "Waiting for the resource to become ready"
MESSAGE_RESOURCE_CREATED = "Resource has been created"
MESSAGE_RESOURCE_UPDATED = "Resource has been updated"

# Event Reasons
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_VALIDATE_FAILED = "ValidateFailed"
EVENT_REASON_CHILD_CREATED = "ResourceCreated"
EVENT_REASON_CHILD_UPDATED = "ResourceUpdated"
EVENT_REASON_CHILD_DELETED = "ResourceDeleted"
EVENT_REASON_FINALIZER_REMOVED = "FinalizerRemoved"

# Containers
CONTROL_PLANE_CONTAINER_NAME = "controller"
DATA_PLANE_CONTAINER_NAME = "proxy"
DEFAULT_CONTROL_PLANE_BASE_IMAGE = "kong/kubernetes-ingress-controller"
DEFAULT_CONTROL_PLANE_TAG = "2.9.3"
DEFAULT_CONTROL_PLANE_IMAGE = f"{DEFAULT_CONTROL_PLANE_BASE_IMAGE}:{DEFAULT_CONTROL_PLANE_TAG}"
DEFAULT_DATA_PLANE_BASE_IMAGE = "kong"
DEFAULT_DATA_PLANE_TAG = "3.2"
DEFAULT_DATA_PLANE_IMAGE = f"{DEFAULT_DATA_PLANE_BASE_IMAGE}:{DEFAULT_DATA_PLANE_TAG}"

# DataPlane ports
DATA_PLANE_ADMIN_API_PORT = 8444
DATA_PLANE_PROXY_PORT = 8000
DATA_PLANE_PROXY_SSL_PORT = 8443
DATA_PLANE_METRICS_PORT = 8100

# Cluster certificate
CLUSTER_CERTIFICATE_VOLUME = "cluster-certificate"
CLUSTER_CERTIFICATE_MOUNT_PATH = "/var/cluster-certificate"
TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY_KEY = "tls.key"
TLS_CA_KEY = "ca.crt"

# Environment variables of the ControlPlane controller container
ENV_POD_NAMESPACE = "POD_NAMESPACE"
ENV_POD_NAME = "POD_NAME"
ENV_CONTROLLER_NAME = "CONTROLLER_GATEWAY_API_CONTROLLER_NAME"
ENV_PUBLISH_SERVICE = "CONTROLLER_PUBLISH_SERVICE"
ENV_ADMIN_URL = "CONTROLLER_KONG_ADMIN_URL"
ENV_ADMIN_TLS_CLIENT_CERT_FILE = "CONTROLLER_KONG_ADMIN_TLS_CLIENT_CERT_FILE"
ENV_ADMIN_TLS_CLIENT_KEY_FILE = "CONTROLLER_KONG_ADMIN_TLS_CLIENT_KEY_FILE"
ENV_ADMIN_CA_CERT_FILE = "CONTROLLER_KONG_ADMIN_CA_CERT_FILE"
ENV_KONG_DATABASE = "KONG_DATABASE"
