"""
Routes/endpoints for the Files API

HTTP   URI                                  Action
----   ---                                  ------
GET    /api/v1/files                        List the user's files (filter/sort)
POST   /api/v1/files                        Create a file record
DELETE /api/v1/files                        Delete all of the user's files
GET    /api/v1/files/usage                  Total size of the user's files
POST   /api/v1/files/delete                 Delete several files by id
POST   /api/v1/files/global                 Register a global file
GET    /api/v1/files/hash/[hash]            Check whether a hash is stored
GET    /api/v1/files/hash/[hash]/count      Count files referencing a hash
GET    /api/v1/files/[id]                   Retrieve one file
PATCH  /api/v1/files/[id]                   Update file metadata
DELETE /api/v1/files/[id]                   Delete one file
"""

from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.files.models import (
    FileIdsRequest,
    FileQuery,
    FileRecordCreate,
    FileRecordPublic,
    FileRecordUpdate,
    FileUsagePublic,
    GlobalFileCreate,
    GlobalFilePublic,
    HashCheckResult,
    HashCountPublic,
)
from api.files.services import FileRegistry
from core.deps import SessionDep, UserIdDep


def get_file_registry(session: SessionDep, user_id: UserIdDep) -> FileRegistry:
    return FileRegistry(session=session, user_id=user_id)


FileRegistryDep = Annotated[FileRegistry, Depends(get_file_registry)]

router = APIRouter(prefix="/files", tags=["File Endpoints"])


@router.get(
    "",
    response_model=list[FileRecordPublic],
    status_code=status.HTTP_200_OK,
    tags=["File Endpoints"],
)
def query_files(
    registry: FileRegistryDep,
    file_query: Annotated[FileQuery, Query()],
) -> list[FileRecordPublic]:
    """
    List the caller's files.

    - q: case-insensitive substring of the file name
    - category: all, documents, images, videos, audios or websites
    - knowledge_base_id: only files linked to this knowledge base
    - show_files_in_knowledge_base: false hides files linked to any knowledge base
    - sorter / sort_type: unknown sorters fall back to newest first
    """
    return registry.query(file_query)


@router.post(
    "",
    response_model=FileRecordPublic,
    status_code=status.HTTP_201_CREATED,
    tags=["File Endpoints"],
)
def create_file(registry: FileRegistryDep, file_in: FileRecordCreate) -> FileRecordPublic:
    """
    Create a file record for the caller.
    """
    return registry.create(file_in)


@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["File Endpoints"],
)
def clear_files(registry: FileRegistryDep) -> None:
    """
    Delete every file record owned by the caller.
    """
    registry.clear()


@router.get(
    "/usage",
    response_model=FileUsagePublic,
    status_code=status.HTTP_200_OK,
    tags=["File Endpoints"],
)
def get_usage(registry: FileRegistryDep) -> FileUsagePublic:
    """
    Total bytes across the caller's file records.
    """
    return FileUsagePublic(user_id=registry.user_id, total_size=registry.count_usage())


@router.post(
    "/delete",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["File Endpoints"],
)
def delete_files(registry: FileRegistryDep, request: FileIdsRequest) -> None:
    """
    Delete several of the caller's files. Unknown ids are ignored.
    """
    registry.delete_many(request.ids)


@router.post(
    "/global",
    response_model=GlobalFilePublic,
    status_code=status.HTTP_201_CREATED,
    tags=["File Endpoints"],
)
def create_global_file(
    registry: FileRegistryDep, global_file_in: GlobalFileCreate
) -> GlobalFilePublic:
    """
    Register a deduplicated blob. Registering a known hash returns the stored entry.
    """
    return registry.create_global_file(global_file_in)


@router.get(
    "/hash/{hash_id}",
    response_model=HashCheckResult,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    tags=["File Endpoints"],
)
def check_hash(registry: FileRegistryDep, hash_id: str) -> HashCheckResult:
    """
    Check whether a blob with this hash has already been stored.
    """
    return registry.check_hash(hash_id)


@router.get(
    "/hash/{hash_id}/count",
    response_model=HashCountPublic,
    status_code=status.HTTP_200_OK,
    tags=["File Endpoints"],
)
def count_files_by_hash(registry: FileRegistryDep, hash_id: str) -> HashCountPublic:
    """
    Number of file records, across all users, referencing a hash.
    """
    return HashCountPublic(hash_id=hash_id, count=registry.count_files_by_hash(hash_id))


@router.get(
    "/{file_id}",
    response_model=FileRecordPublic,
    status_code=status.HTTP_200_OK,
    tags=["File Endpoints"],
)
def get_file(registry: FileRegistryDep, file_id: str) -> FileRecordPublic:
    """
    Retrieve one of the caller's files.
    """
    record = registry.find_by_id(file_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File {file_id} not found"
        )
    return record


@router.patch(
    "/{file_id}",
    response_model=FileRecordPublic,
    status_code=status.HTTP_200_OK,
    tags=["File Endpoints"],
)
def update_file(
    registry: FileRegistryDep, file_id: str, file_update: FileRecordUpdate
) -> FileRecordPublic:
    """
    Update the name, url, size or mime type of one of the caller's files.
    """
    record = registry.update(file_id, file_update)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File {file_id} not found"
        )
    return record


@router.delete(
    "/{file_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["File Endpoints"],
)
def delete_file(registry: FileRegistryDep, file_id: str) -> None:
    """
    Delete one of the caller's files. Deleting a missing file succeeds.
    """
    registry.delete(file_id)
