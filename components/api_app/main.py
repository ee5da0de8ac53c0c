# ruff: noqa: B008

from pathlib import Path

from components.backup import (
    BackupDescriptor,
    BackupFailedError,
    BackupVerification,
    InvalidBackupError,
    RestoreFailedError,
)
from components.bundle_service import BundleService, OpenResult, VersionReport
from components.crdt_health import (
    RepairError,
    RepairResult,
    SourceNotReadableError,
    ValidationResult,
)
from components.document_schema import Bundle
from components.migration import MigrationError, MigrationResult, NewerVersionError
from fastapi import Depends, FastAPI, HTTPException

from .models import (
    BackupListResponse,
    BackupRequest,
    BundleListResponse,
    BundleRequest,
    RestoreRequest,
    RestoreResponse,
    StatusResponse,
)


def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, FileNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, NewerVersionError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, (MigrationError, SourceNotReadableError)):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, InvalidBackupError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def create_app(service: BundleService) -> FastAPI:
    """
    Creates and configures the FastAPI application, registering all routes.
    This function returns the app object but does not run it.

    Args:
        service: The fully initialized BundleService instance.

    Returns:
        The configured FastAPI app instance.
    """
    app = FastAPI(title="Bundle Sync API")

    def get_service() -> BundleService:
        return service

    def resolve(svc: BundleService, bundle_path: str) -> Bundle:
        try:
            return svc.resolve_bundle(bundle_path)
        except FileNotFoundError as e:
            raise _to_http_error(e) from e

    @app.get(
        "/status", response_model=StatusResponse, tags=["admin"], operation_id="status"
    )
    def status(svc: BundleService = Depends(get_service)) -> StatusResponse:
        return StatusResponse(
            status="ok",
            app_version=svc.config.app.version,
            schema_version=int(svc.checker.current),
            library_dir=str(svc.config.get_library_path()),
            bundle_count=len(svc.list_bundles()),
        )

    @app.get(
        "/bundles",
        response_model=BundleListResponse,
        tags=["bundles"],
        operation_id="list_bundles",
    )
    def list_bundles(svc: BundleService = Depends(get_service)) -> BundleListResponse:
        bundles = [str(path) for path in svc.list_bundles()]
        return BundleListResponse(bundles=bundles, total_count=len(bundles))

    @app.get(
        "/bundles/version",
        response_model=VersionReport,
        tags=["bundles"],
        operation_id="check_version",
    )
    def check_version(
        bundle_path: str, svc: BundleService = Depends(get_service)
    ) -> VersionReport:
        bundle = resolve(svc, bundle_path)
        try:
            return svc.check_version(bundle)
        except MigrationError as e:
            raise _to_http_error(e) from e

    @app.post(
        "/bundles/open",
        response_model=OpenResult,
        tags=["bundles"],
        operation_id="open_bundle",
    )
    async def open_bundle(
        request: BundleRequest, svc: BundleService = Depends(get_service)
    ) -> OpenResult:
        bundle = resolve(svc, request.bundle_path)
        try:
            return await svc.open_bundle_async(bundle)
        except (MigrationError, RepairError, BackupFailedError) as e:
            raise _to_http_error(e) from e

    @app.get(
        "/bundles/health",
        response_model=ValidationResult,
        tags=["health"],
        operation_id="validate_bundle",
    )
    async def validate_bundle(
        bundle_path: str, svc: BundleService = Depends(get_service)
    ) -> ValidationResult:
        bundle = resolve(svc, bundle_path)
        return await svc.validate_async(bundle)

    @app.post(
        "/bundles/repair",
        response_model=RepairResult,
        tags=["health"],
        operation_id="repair_bundle",
    )
    async def repair_bundle(
        request: BundleRequest, svc: BundleService = Depends(get_service)
    ) -> RepairResult:
        bundle = resolve(svc, request.bundle_path)
        try:
            return await svc.repair_async(bundle)
        except (RepairError, BackupFailedError) as e:
            raise _to_http_error(e) from e

    @app.post(
        "/bundles/migrate",
        response_model=MigrationResult,
        tags=["bundles"],
        operation_id="migrate_bundle",
    )
    async def migrate_bundle(
        request: BundleRequest, svc: BundleService = Depends(get_service)
    ) -> MigrationResult:
        bundle = resolve(svc, request.bundle_path)
        try:
            return await svc.migrate_async(bundle)
        except (MigrationError, BackupFailedError) as e:
            raise _to_http_error(e) from e

    @app.post(
        "/backups",
        response_model=BackupDescriptor,
        tags=["backups"],
        operation_id="create_backup",
    )
    async def create_backup(
        request: BundleRequest, svc: BundleService = Depends(get_service)
    ) -> BackupDescriptor:
        bundle = resolve(svc, request.bundle_path)
        try:
            return await svc.backup_async(bundle)
        except BackupFailedError as e:
            raise _to_http_error(e) from e

    @app.get(
        "/backups",
        response_model=BackupListResponse,
        tags=["backups"],
        operation_id="list_backups",
    )
    def list_backups(
        bundle_path: str, svc: BundleService = Depends(get_service)
    ) -> BackupListResponse:
        bundle = resolve(svc, bundle_path)
        backups = svc.list_backups(bundle)
        return BackupListResponse(backups=backups, total_count=len(backups))

    @app.post(
        "/backups/verify",
        response_model=BackupVerification,
        tags=["backups"],
        operation_id="verify_backup",
    )
    async def verify_backup(
        request: BackupRequest, svc: BundleService = Depends(get_service)
    ) -> BackupVerification:
        return await svc.verify_backup_async(request.backup_path)

    @app.post(
        "/backups/restore",
        response_model=RestoreResponse,
        tags=["backups"],
        operation_id="restore_backup",
    )
    async def restore_backup(
        request: RestoreRequest, svc: BundleService = Depends(get_service)
    ) -> RestoreResponse:
        bundle = resolve(svc, request.bundle_path)
        try:
            await svc.restore_backup_async(request.backup_path, bundle)
        except (InvalidBackupError, RestoreFailedError) as e:
            raise _to_http_error(e) from e
        return RestoreResponse(
            success=True,
            message=f"Restored {bundle.path.name} from {Path(request.backup_path).name}",
        )

    return app
