"""Access to the Fabric and Quilt meta APIs, used to resolve mod loader profiles that
are merged on top of a vanilla version.
"""

import logging

from .http import http_request, HttpError, RetryPolicy

from typing import Optional, Any, Iterator


logger = logging.getLogger(__name__)


class FabricApiLoader:
    """This class describes a loader returned from the fabric API.
    """
    __slots__ = "version", "stable"
    def __init__(self, version: str, stable: bool) -> None:
        self.version = version
        self.stable = stable

    def __repr__(self) -> str:
        return f"<FabricApiLoader {self.version}{'' if self.stable else ' (unstable)'}>"


class FabricApi:
    """This class is used to defined constants for both official Fabric backend API and
    Quilt API which have the same endpoints. So we use the same logic for both mod
    loaders.
    """

    def __init__(self, name: str, api_url: str, default_prefix: str) -> None:
        self.name = name
        self.api_url = api_url
        self.default_prefix = default_prefix

    def request_fabric_meta(self, method: str, *, retry: Optional[RetryPolicy] = None) -> Any:
        """Generic HTTP request to the fabric's REST API.
        """
        return http_request("GET", f"{self.api_url}{method}", accept="application/json", retry=retry).json()

    def request_version_loader_profile(self, vanilla_version: str, loader_version: str, *,
        retry: Optional[RetryPolicy] = None
    ) -> dict:
        """Return the version profile for the given vanilla version and loader.
        """
        return self.request_fabric_meta(f"versions/loader/{vanilla_version}/{loader_version}/profile/json", retry=retry)

    def request_loaders(self, vanilla_version: Optional[str] = None, *,
        retry: Optional[RetryPolicy] = None
    ) -> Iterator[FabricApiLoader]:
        """Return an iterator of loaders available for the given vanilla version, if no
        vanilla version is specified, this returned an iterator of all loaders.
        """

        def map_loader(obj) -> FabricApiLoader:
            return FabricApiLoader(str(obj.get("version", "")), bool(obj.get("stable", False)))

        if vanilla_version is not None:
            loaders = self.request_fabric_meta(f"versions/loader/{vanilla_version}", retry=retry)
            return map(lambda obj: map_loader(obj["loader"]), loaders)
        else:
            return map(map_loader, self.request_fabric_meta("versions/loader", retry=retry))

    def request_latest_loader(self, vanilla_version: Optional[str] = None, *,
        retry: Optional[RetryPolicy] = None
    ) -> Optional[FabricApiLoader]:
        """Return the latest loader version for the given vanilla version, if no vanilla
        version is specified, this return the latest loader.
        """
        try:
            return next(self.request_loaders(vanilla_version, retry=retry))
        except StopIteration:
            return None

    def __repr__(self) -> str:
        return f"<FabricApi {self.name}>"


FABRIC_API = FabricApi("fabric", "https://meta.fabricmc.net/v2/", "fabric-loader")
QUILT_API = FabricApi("quilt", "https://meta.quiltmc.org/v3/", "quilt-loader")

LOADER_APIS = {
    FABRIC_API.name: FABRIC_API,
    QUILT_API.name: QUILT_API,
}


class LoaderSpec:
    """Describe a mod loader to install on top of a vanilla version. The loader version
    is resolved to the latest one when not specified.
    """

    __slots__ = "api", "loader_version", "prefix"

    def __init__(self, api: FabricApi, loader_version: Optional[str] = None, *,
        prefix: Optional[str] = None
    ) -> None:
        self.api = api
        self.loader_version = loader_version
        self.prefix = api.default_prefix if prefix is None else prefix

    @classmethod
    def with_fabric(cls, loader_version: Optional[str] = None) -> "LoaderSpec":
        return cls(FABRIC_API, loader_version)

    @classmethod
    def with_quilt(cls, loader_version: Optional[str] = None) -> "LoaderSpec":
        return cls(QUILT_API, loader_version)

    @classmethod
    def from_str(cls, s: str) -> "LoaderSpec":
        """Parse a loader string 'api[:loader_version]', for example 'fabric' or
        'quilt:0.26.0'.
        """
        api_name, _, loader_version = s.partition(":")
        api = LOADER_APIS.get(api_name)
        if api is None:
            raise ValueError(f"unknown loader '{api_name}', expected one of: {', '.join(LOADER_APIS)}")
        return cls(api, loader_version or None)

    def version_id(self, vanilla_version: str, loader_version: str) -> str:
        """Return the identifier of the merged version, it's the same as the one used by
        the official installers: `<prefix>-<loader>-<vanilla>`.
        """
        return f"{self.prefix}-{loader_version}-{vanilla_version}"

    def resolve_loader_version(self, vanilla_version: str, *,
        retry: Optional[RetryPolicy] = None
    ) -> Optional[str]:
        """Return the loader version to use, the latest one for the given vanilla version
        if not specified. None is returned if no loader supports the vanilla version.
        """

        if self.loader_version is not None:
            return self.loader_version

        try:
            loader = self.api.request_latest_loader(vanilla_version, retry=retry)
        except HttpError as error:
            if error.res.status not in (404, 400):
                raise
            loader = None

        if loader is not None:
            logger.debug("latest %s loader for %s is %s", self.api.name, vanilla_version, loader.version)
        return None if loader is None else loader.version

    def __repr__(self) -> str:
        return f"<LoaderSpec {self.api.name}:{self.loader_version or 'latest'}>"
