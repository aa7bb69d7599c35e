# plugins/core_codepage/api.py
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

# --- 核心依赖 ---
from backend.core.dependencies import Service
from plugins.core_records.contracts import AuthError, HttpError, NetworkError, RecordStoreError

# --- 导入本插件的模型 ---
from .contracts import (
    Codepage,
    CodepageDraft,
    CodepageUpdate,
    CodepageVersion,
    ExportFormat,
    ImportFormat,
    InvalidCodepageError,
    NoOpUpdateError,
    NotFoundError,
    SearchCriteria,
    UnrecognizedFormatError,
    ValidationBlockedError,
    ValidationOptions,
    ValidationReport,
    VersionComparison,
)
from .service import CodepageService
from .validation import validate
from .versions import VersionControlService

logger = logging.getLogger(__name__)

codepage_router = APIRouter(prefix="/api/codepages", tags=["Codepages"])

EXPORT_MEDIA_TYPES = {
    ExportFormat.HTML: "text/html",
    ExportFormat.JSON: "application/json",
    ExportFormat.MARKDOWN: "text/markdown",
}


# --- 请求 / 响应模型 ---

class ValidateRequest(BaseModel):
    code: str
    options: ValidationOptions = Field(default_factory=ValidationOptions)

class DeployRequest(CodepageDraft):
    validate_first: bool = Field(default=False, description="Run static validation and refuse invalid code.")
    table_id: Optional[str] = None

class CloneRequest(BaseModel):
    new_name: str
    modifications: Optional[CodepageUpdate] = None

class ImportRequest(BaseModel):
    content: str
    format: ImportFormat = ImportFormat.AUTO
    name: Optional[str] = None
    overwrite: bool = False
    table_id: Optional[str] = None

class SaveVersionRequest(BaseModel):
    version_label: Optional[str] = None
    code_snapshot: Optional[str] = Field(default=None, description="Defaults to the codepage's current code.")
    change_log: Optional[str] = None

class CreatedResponse(BaseModel):
    id: str


# --- 错误翻译 ---

@contextmanager
def translate_errors() -> Iterator[None]:
    """把领域与远程存储错误翻译成 HTTP 响应，区分校验阻止、远程拒绝与暂时不可用。"""
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (NoOpUpdateError, InvalidCodepageError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UnrecognizedFormatError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ValidationBlockedError as e:
        raise HTTPException(
            status_code=422,
            detail={"message": "Blocked by validation.", "report": e.report.model_dump()},
        )
    except AuthError as e:
        raise HTTPException(status_code=502, detail=f"Authorization with remote store failed: {e}")
    except HttpError as e:
        raise HTTPException(
            status_code=502,
            detail={"message": f"Rejected by remote store: {e}", "remote_status": e.status, "remote_body": e.body},
        )
    except NetworkError as e:
        raise HTTPException(status_code=503, detail=f"Remote store temporarily unavailable, retry later: {e}")
    except RecordStoreError as e:
        raise HTTPException(status_code=502, detail=f"Remote store failed: {e}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- 校验 ---

@codepage_router.post("/validate", response_model=ValidationReport, summary="Statically validate codepage source")
async def validate_code(request: ValidateRequest):
    return validate(request.code, request.options)


# --- 生命周期 ---

@codepage_router.post("", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
async def deploy_codepage(
    request: DeployRequest,
    service: CodepageService = Depends(Service("codepage_service")),
):
    draft = CodepageDraft.model_validate(request.model_dump(include=set(CodepageDraft.model_fields)))
    with translate_errors():
        record_id = await service.deploy(draft, table_id=request.table_id, validate_first=request.validate_first)
    return CreatedResponse(id=record_id)

@codepage_router.get("", response_model=List[Codepage])
async def list_codepages(
    limit: int = Query(50, ge=1, le=1000),
    table_id: Optional[str] = None,
    service: CodepageService = Depends(Service("codepage_service")),
):
    with translate_errors():
        return await service.list(limit, table_id=table_id)

@codepage_router.get("/search", response_model=List[Codepage])
async def search_codepages(
    term: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    target_table_id: Optional[str] = None,
    active_only: bool = True,
    table_id: Optional[str] = None,
    service: CodepageService = Depends(Service("codepage_service")),
):
    criteria = SearchCriteria(term=term, tags=tags or [], target_table_id=target_table_id, active_only=active_only)
    with translate_errors():
        return await service.search(criteria, table_id=table_id)

@codepage_router.post("/import", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
async def import_codepage(
    request: ImportRequest,
    service: CodepageService = Depends(Service("codepage_service")),
):
    with translate_errors():
        record_id = await service.import_codepage(
            request.content,
            request.format,
            name=request.name,
            overwrite=request.overwrite,
            table_id=request.table_id,
        )
    return CreatedResponse(id=record_id)

@codepage_router.get("/{codepage_id}", response_model=Codepage)
async def get_codepage(
    codepage_id: str,
    table_id: Optional[str] = None,
    service: CodepageService = Depends(Service("codepage_service")),
):
    with translate_errors():
        return await service.get(codepage_id, table_id=table_id)

@codepage_router.patch("/{codepage_id}", response_model=Codepage)
async def update_codepage(
    codepage_id: str,
    changes: CodepageUpdate,
    validate_first: bool = False,
    table_id: Optional[str] = None,
    service: CodepageService = Depends(Service("codepage_service")),
):
    with translate_errors():
        await service.update(codepage_id, changes, table_id=table_id, validate_first=validate_first)
        return await service.get(codepage_id, table_id=table_id)

@codepage_router.post("/{codepage_id}/activate", status_code=status.HTTP_204_NO_CONTENT)
async def activate_codepage(
    codepage_id: str,
    table_id: Optional[str] = None,
    service: CodepageService = Depends(Service("codepage_service")),
):
    with translate_errors():
        await service.activate(codepage_id, table_id=table_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@codepage_router.post("/{codepage_id}/deactivate", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_codepage(
    codepage_id: str,
    table_id: Optional[str] = None,
    service: CodepageService = Depends(Service("codepage_service")),
):
    with translate_errors():
        await service.deactivate(codepage_id, table_id=table_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@codepage_router.post("/{codepage_id}/clone", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
async def clone_codepage(
    codepage_id: str,
    request: CloneRequest,
    table_id: Optional[str] = None,
    service: CodepageService = Depends(Service("codepage_service")),
):
    with translate_errors():
        new_id = await service.clone(codepage_id, request.new_name, request.modifications, table_id=table_id)
    return CreatedResponse(id=new_id)

@codepage_router.get("/{codepage_id}/export")
async def export_codepage(
    codepage_id: str,
    format: ExportFormat = ExportFormat.JSON,
    table_id: Optional[str] = None,
    service: CodepageService = Depends(Service("codepage_service")),
):
    with translate_errors():
        content = await service.export_codepage(codepage_id, format, table_id=table_id)
    return Response(content=content, media_type=EXPORT_MEDIA_TYPES[format])


# --- 版本控制 ---

@codepage_router.post(
    "/{codepage_id}/versions", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED
)
async def save_version(
    codepage_id: str,
    request: Optional[SaveVersionRequest] = None,
    service: CodepageService = Depends(Service("codepage_service")),
    versions: VersionControlService = Depends(Service("version_control_service")),
):
    request = request or SaveVersionRequest()
    with translate_errors():
        snapshot = request.code_snapshot
        if snapshot is None:
            snapshot = (await service.get(codepage_id)).code
        version_id = await versions.save_version(
            codepage_id, request.version_label, snapshot, request.change_log
        )
    return CreatedResponse(id=version_id)

@codepage_router.get("/{codepage_id}/versions", response_model=List[CodepageVersion])
async def list_versions(
    codepage_id: str,
    limit: int = Query(20, ge=1, le=500),
    versions: VersionControlService = Depends(Service("version_control_service")),
):
    with translate_errors():
        return await versions.list_versions(codepage_id, limit)

@codepage_router.get("/{codepage_id}/versions/compare", response_model=VersionComparison)
async def compare_versions(
    codepage_id: str,
    from_version: str,
    to_version: str,
    versions: VersionControlService = Depends(Service("version_control_service")),
):
    with translate_errors():
        return await versions.compare_versions(codepage_id, from_version, to_version)

@codepage_router.post("/{codepage_id}/versions/{version_id}/rollback", response_model=CodepageVersion)
async def rollback_codepage(
    codepage_id: str,
    version_id: str,
    versions: VersionControlService = Depends(Service("version_control_service")),
):
    with translate_errors():
        return await versions.rollback(codepage_id, version_id)
