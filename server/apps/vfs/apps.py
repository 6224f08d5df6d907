"""Django app configuration for vfs app."""

from typing import TYPE_CHECKING, override

from django.apps import AppConfig
from django.conf import settings

if TYPE_CHECKING:
    from server.apps.vfs.logic.file_service import VirtualFileService


class VfsConfig(AppConfig):
    """Configuration for vfs app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.vfs'
    verbose_name = 'Virtual files'

    file_service: 'VirtualFileService'

    @override
    def ready(self) -> None:
        """Build the blob store and the file service once per process.

        Constructing the storage does not contact the blob store, so
        startup works while it is down.
        """
        from server.apps.vfs.infrastructure.storage import (  # noqa: WPS433
            build_blob_store,
        )
        from server.apps.vfs.logic.file_service import (  # noqa: WPS433
            VirtualFileService,
        )

        self.file_service = VirtualFileService(
            build_blob_store(),
            strict_blob_writes=settings.VFS_STRICT_BLOB_WRITES,
            recent_files_limit=settings.VFS_RECENT_FILES_LIMIT,
        )
