"""FastAPI web application for pkgdrift."""

import logging
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from core.detect import identify
from core.errors import ManifestError
from core.models import Dependency, PackageSource, Project, ProjectList, SelectionSettings
from core.parse_dotnet import parse_project_file
from core.parse_node import parse_package_json
from core.patch import patch_manifest_text
from core.refresh import refresh_projects

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("pkgdrift.web")

app = FastAPI(
    title="pkgdrift",
    description="Check npm and NuGet dependencies against their registries",
    version="0.1.0",
)

_PARSERS = {
    PackageSource.NPM: parse_package_json,
    PackageSource.NUGET: parse_project_file,
}


class CheckRequest(BaseModel):
    """Request model for checking a manifest."""
    content: str
    ecosystem: Optional[str] = None
    filename: Optional[str] = None
    keep_major: bool = False
    major: Optional[int] = None
    include_pre_release: bool = False


class Advisory(BaseModel):
    severity: Optional[str]
    advisory_url: Optional[str]
    title: Optional[str]


class DependencyReport(BaseModel):
    """One resolved dependency."""
    name: str
    dev_dependency: bool
    current_version: str
    latest_version: Optional[str]
    latest_minor_version: Optional[str]
    requested_version: Optional[str]
    desired_version: Optional[str]
    has_version_mismatch: bool
    is_current_version_invalid: bool
    is_requested_version_invalid: bool
    has_failed: bool
    failure_message: Optional[str]
    package_url: Optional[str]
    project_url: Optional[str]
    framework: Optional[str]
    vulnerabilities: list[Advisory]


class UpdateFailure(BaseModel):
    name: str
    message: Optional[str]


class CheckResponse(BaseModel):
    """Response model for a manifest check."""
    ecosystem: str
    dependencies: list[DependencyReport]
    updated_content: str
    has_changes: bool
    update_failures: list[UpdateFailure]


def _text(version) -> Optional[str]:
    return str(version) if version is not None else None


def _report(dependency: Dependency) -> DependencyReport:
    return DependencyReport(
        name=dependency.name,
        dev_dependency=dependency.dev_dependency,
        current_version=dependency.current_version.raw,
        latest_version=_text(dependency.latest_version),
        latest_minor_version=_text(dependency.latest_minor_version),
        requested_version=_text(dependency.requested_version),
        desired_version=_text(dependency.desired_version),
        has_version_mismatch=dependency.has_version_mismatch,
        is_current_version_invalid=dependency.is_current_version_invalid,
        is_requested_version_invalid=dependency.is_requested_version_invalid,
        has_failed=dependency.has_failed,
        failure_message=dependency.failure_message,
        package_url=dependency.package_url,
        project_url=dependency.project_url,
        framework=dependency.target_framework,
        vulnerabilities=[
            Advisory(severity=v.severity, advisory_url=v.advisory_url, title=v.title)
            for v in dependency.current_version.vulnerabilities
        ],
    )


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.post("/api/check", response_model=CheckResponse)
async def check_dependencies(request: CheckRequest):
    """Resolve the dependencies of manifest text and return the patched text."""
    content = request.content
    if not content.strip():
        raise HTTPException(status_code=400, detail="No content provided")

    ecosystem = request.ecosystem or identify(content, request.filename)
    try:
        source = PackageSource(ecosystem)
    except ValueError:
        source = PackageSource.UNKNOWN
    if source not in _PARSERS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported ecosystem: {ecosystem}. Only npm and nuget are supported.",
        )

    try:
        dependencies = _PARSERS[source](content)
    except ManifestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not dependencies:
        raise HTTPException(status_code=400, detail="No dependencies found")

    selection = SelectionSettings(
        keep_major=request.keep_major,
        requested_major=request.major,
        include_pre_release=request.include_pre_release,
    )
    projects = ProjectList()
    projects.add_project(
        Project(name="upload", file_path=request.filename or "<upload>", dependencies=dependencies, source=source)
    )

    try:
        await refresh_projects(projects, source, selection)
    except Exception as e:
        logger.exception("Refresh failed")
        raise HTTPException(status_code=500, detail=f"Error processing dependencies: {str(e)}")

    updated_content, result = patch_manifest_text(content, dependencies)

    return CheckResponse(
        ecosystem=source.value,
        dependencies=[_report(d) for d in dependencies],
        updated_content=updated_content,
        has_changes=result.updated_count > 0,
        update_failures=[
            UpdateFailure(name=o.dependency.name, message=o.message) for o in result.outcomes if o.failed
        ],
    )


@app.post("/api/upload", response_model=CheckResponse)
async def upload_file(
    file: UploadFile = File(...),
    ecosystem: Optional[str] = Form(None),
    keep_major: bool = Form(False),
    major: Optional[int] = Form(None),
    include_pre_release: bool = Form(False),
):
    """Upload and check a manifest file."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    try:
        text_content = (await file.read()).decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="File must be valid UTF-8 text")

    request = CheckRequest(
        content=text_content,
        ecosystem=ecosystem,
        filename=file.filename,
        keep_major=keep_major,
        major=major,
        include_pre_release=include_pre_release,
    )
    return await check_dependencies(request)
