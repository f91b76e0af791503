"""
Resolves an app and target OS to a depot, manifest and decryption key
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from steam_depot import constants
from steam_depot.exceptions import (
    DepotKeyDeniedError,
    DepotNotFoundError,
    LicenseDeniedError,
    ManifestNotFoundError,
    ProductInfoError,
)
from steam_depot.messages import (
    AccessTokenRequest,
    DepotKeyRequest,
    OwnershipTicketRequest,
    ProductInfoRequest,
)
from steam_depot.models import EResult, ResolvedManifest, describe_result
from steam_depot.transport import PlatformConnection

# Limits for logging a product info subtree
TREE_MAX_DEPTH = 5
TREE_MAX_CHILDREN = 20


def get_gid(manifest: Any) -> Optional[int]:
    """
    Extract a manifest id from a branch entry.

    Newer product info nests it as ``{"gid": ...}``, older info stores the
    id directly.
    """
    if isinstance(manifest, dict):
        manifest = manifest.get("gid")
    if manifest is None or manifest == "":
        return None
    try:
        return int(manifest)
    except (TypeError, ValueError):
        return None


def format_tree(node: Any, max_depth: int = TREE_MAX_DEPTH,
                max_children: int = TREE_MAX_CHILDREN, indent: int = 0) -> List[str]:
    """Render a nested key-value structure as indented lines."""
    pad = "  " * indent
    if not isinstance(node, dict):
        return [f"{pad}{node!r}"]

    lines = []
    for count, (key, value) in enumerate(node.items()):
        if count >= max_children:
            lines.append(f"{pad}... ({len(node) - max_children} more)")
            break
        if isinstance(value, dict):
            if indent + 1 >= max_depth:
                lines.append(f"{pad}{key}: {{...}}")
            else:
                lines.append(f"{pad}{key}:")
                lines.extend(format_tree(value, max_depth, max_children, indent + 1))
        else:
            lines.append(f"{pad}{key} = {value!r}")
    return lines


class ManifestResolver:
    """
    Finds the depot for a target OS and its current manifest on a branch.
    """

    def __init__(self, connection: PlatformConnection, request_timeout: float = constants.DEFAULT_TIMEOUT):
        self.logger = logging.getLogger("steam_depot.resolver")
        self.connection = connection
        self.request_timeout = request_timeout

    def resolve(self, app_id: int, target_os: str,
                branch: str = constants.DEFAULT_BRANCH) -> ResolvedManifest:
        """
        Resolve depot, manifest and depot key.

        Raises:
            LicenseDeniedError: If the account does not own the app
            ProductInfoError: If the app is missing from product info
            DepotNotFoundError: If no depot targets ``target_os``
            ManifestNotFoundError: If the depot has no manifest on ``branch``
            DepotKeyDeniedError: If the depot key is refused
        """
        depot_id, manifest_id = self.locate_manifest(app_id, target_os, branch)
        depot_key = self.get_depot_key(app_id, depot_id)
        return ResolvedManifest(app_id=app_id, depot_id=depot_id, manifest_id=manifest_id,
                                depot_key=depot_key, target_os=target_os)

    def locate_manifest(self, app_id: int, target_os: str,
                        branch: str = constants.DEFAULT_BRANCH) -> Tuple[int, int]:
        """Find (depot id, manifest id) without fetching the depot key."""
        self.check_license(app_id)
        access_token = self.get_access_token(app_id)
        app_info = self.get_product_info(app_id, access_token)
        depot_id, depot = self.find_depot(app_info, target_os)
        manifest_id = self.get_manifest_id(depot_id, depot, branch)
        self.logger.info(f"Depot {depot_id} manifest {manifest_id} ({target_os}, {branch})")
        return depot_id, manifest_id

    def check_license(self, app_id: int) -> None:
        """
        Check app ownership.

        Only an explicit access-denied result is fatal; other failures are
        logged and resolution continues.
        """
        response = self.connection.call(OwnershipTicketRequest(app_id=app_id), timeout=self.request_timeout)
        if response.result == EResult.ACCESS_DENIED:
            raise LicenseDeniedError(f"Account does not own app {app_id}")
        if response.result != EResult.OK:
            self.logger.warning(f"Ownership check for {app_id} returned {describe_result(response.result)}")
        else:
            self.logger.debug(f"License confirmed for {app_id}")

    def get_access_token(self, app_id: int) -> int:
        """Return the product info access token for an app, or 0 if none was issued."""
        response = self.connection.call(AccessTokenRequest(app_id=app_id), timeout=self.request_timeout)
        token = response.app_tokens.get(app_id, 0)
        if not token:
            self.logger.debug(f"No product info access token for {app_id}")
        return token

    def get_product_info(self, app_id: int, access_token: int = 0) -> Dict[str, Any]:
        response = self.connection.call(ProductInfoRequest(app_id=app_id, access_token=access_token),
                                        timeout=self.request_timeout)
        app_info = response.apps.get(app_id)
        if not app_info:
            raise ProductInfoError(f"No product info returned for app {app_id}")
        return app_info

    def find_depot(self, app_info: Dict[str, Any], target_os: str) -> Tuple[int, Dict[str, Any]]:
        """
        Find the first depot whose ``config.oslist`` names ``target_os``.

        Only numerically named depot entries are considered.
        """
        depots = app_info.get("depots")
        if not isinstance(depots, dict):
            raise ProductInfoError("Product info has no depots section")

        wanted = target_os.lower()
        for key, depot in depots.items():
            if not str(key).isdigit() or not isinstance(depot, dict):
                continue
            config = depot.get("config") or {}
            oslist = str(config.get("oslist", "")).lower()
            if wanted in [os_name.strip() for os_name in oslist.split(",")]:
                return int(key), depot

        raise DepotNotFoundError(f"No depot found for target OS '{target_os}'")

    def get_manifest_id(self, depot_id: int, depot: Dict[str, Any],
                        branch: str = constants.DEFAULT_BRANCH) -> int:
        manifests = depot.get("manifests") or {}
        manifest_id = get_gid(manifests.get(branch)) if isinstance(manifests, dict) else None
        if manifest_id is None:
            self.logger.error(f"No {branch} manifest for depot {depot_id}. Depot info:")
            for line in format_tree(depot):
                self.logger.error(line)
            raise ManifestNotFoundError(f"No {branch} manifest found for depot {depot_id}", raw=depot)
        return manifest_id

    def get_depot_key(self, app_id: int, depot_id: int) -> bytes:
        response = self.connection.call(DepotKeyRequest(app_id=app_id, depot_id=depot_id),
                                        timeout=self.request_timeout)
        if response.result != EResult.OK or not response.depot_key:
            raise DepotKeyDeniedError(depot_id, response.result)
        self.logger.debug(f"Got depot key for {depot_id}")
        return response.depot_key
