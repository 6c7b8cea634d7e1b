"""
PostgreSQL client facade used by the CLI and by embedding applications
"""

from typing import AsyncIterator, List, Optional, Union

import httpx

from .archive import package_as_archive
from .dump import dump as dump_stream
from .probe import test_connection
from .restore import restore as run_restore
from .config import ConfigManager
from .models import DumpOptions, RestoreResult, RestoreSource
from .stream import Channel
from .versions import SupportedVersion, list_versions, resolve_version


class PostgresClient:
    """Binds configuration (tool paths, chunk sizes, HTTP timeout) to the core operations"""

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config_manager = config_manager or ConfigManager()
        self.http_client = http_client

    def resolve_version(self, label: str) -> SupportedVersion:
        return resolve_version(label, self.config_manager.get_tools_root())

    def list_versions(self) -> List[SupportedVersion]:
        return list_versions(self.config_manager.get_tools_root())

    def _version(self, version: Union[SupportedVersion, str]) -> SupportedVersion:
        if isinstance(version, SupportedVersion):
            return version
        return self.resolve_version(version)

    async def test(self, version: Union[SupportedVersion, str], conn_string: str) -> None:
        """Raises ConnectivityError if the database cannot be reached"""
        await test_connection(self._version(version), conn_string)

    def dump(
        self,
        version: Union[SupportedVersion, str],
        conn_string: str,
        options: Optional[DumpOptions] = None,
    ) -> AsyncIterator[bytes]:
        return dump_stream(
            self._version(version),
            conn_string,
            options,
            chunk_size=self.config_manager.get_chunk_size(),
        )

    def package_as_archive(self, stream: AsyncIterator[bytes]) -> Channel:
        return package_as_archive(stream, depth=self.config_manager.get_channel_depth())

    def dump_zip(
        self,
        version: Union[SupportedVersion, str],
        conn_string: str,
        options: Optional[DumpOptions] = None,
    ) -> Channel:
        """ZIP-compressed SQL dump; must be called from a running event loop"""
        return self.package_as_archive(self.dump(version, conn_string, options))

    async def restore(
        self,
        version: Union[SupportedVersion, str],
        conn_string: str,
        source: RestoreSource,
    ) -> RestoreResult:
        return await run_restore(
            self._version(version),
            conn_string,
            source,
            chunk_size=self.config_manager.get_chunk_size(),
            channel_depth=self.config_manager.get_channel_depth(),
            http_client=self.http_client,
            http_timeout=self.config_manager.get_http_timeout(),
        )
