"""
Services for the Files API.

FileRegistry owns a user's file records and keeps the shared GlobalFile
table in step with them: a global file is removed in the same transaction
that deletes its last referencing record, unless DISABLE_REMOVE_GLOBAL_FILE
is set.
"""

import logging
from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, delete, func, or_, select

from api.files.models import (
    CATEGORY_MIME_PATTERNS,
    SORTABLE_FIELDS,
    FileCategory,
    FileQuery,
    FileRecord,
    FileRecordCreate,
    FileRecordUpdate,
    GlobalFile,
    GlobalFileCreate,
    HashCheckResult,
    KnowledgeBaseFile,
    SortType,
    utcnow,
)
from core.config import is_global_file_removal_disabled


logger = logging.getLogger(__name__)

# Client-side field names accepted as sorters
SORTER_ALIASES = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "fileType": "mime_type",
}


class FileRegistry:
    """
    File records of a single user.

    The user id is fixed at construction; every read and write is scoped to
    it except the hash lookups, which span all users because global files
    are shared.
    """

    def __init__(self, session: Session, user_id: str):
        self.session = session
        self.user_id = user_id

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def create(self, file_in: FileRecordCreate) -> FileRecord:
        """
        Insert a file record, plus its knowledge base link when one is given.

        A file_hash must resolve to a global file. If it does not, the
        request has to carry global_file so the entry can be created in the
        same transaction; otherwise the create is rejected with 409.
        """
        file_hash = file_in.file_hash
        if file_hash is None and file_in.global_file is not None:
            file_hash = file_in.global_file.hash_id

        if file_in.id is not None and self.session.get(FileRecord, file_in.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"File {file_in.id} already exists"
            )

        try:
            if file_hash is not None and self.session.get(GlobalFile, file_hash) is None:
                if file_in.global_file is None:
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail=f"Global file {file_hash} does not exist"
                    )
                self.session.add(
                    _global_file_from_create(file_in.global_file, hash_id=file_hash)
                )
                self.session.flush()

            record = FileRecord(
                user_id=self.user_id,
                name=file_in.name,
                url=file_in.url,
                size=file_in.size,
                mime_type=file_in.mime_type,
                file_hash=file_hash,
            )
            if file_in.id is not None:
                record.id = file_in.id
            self.session.add(record)
            self.session.flush()

            if file_in.knowledge_base_id:
                self.session.add(
                    KnowledgeBaseFile(
                        file_id=record.id,
                        knowledge_base_id=file_in.knowledge_base_id,
                    )
                )

            self.session.commit()
        except (HTTPException, SQLAlchemyError):
            self.session.rollback()
            raise

        self.session.refresh(record)
        logger.info("Created file %s for user %s", record.id, self.user_id)
        return record

    def create_global_file(self, global_file_in: GlobalFileCreate) -> GlobalFile:
        """
        Register a deduplicated blob.
        An existing hash is left untouched and returned as is.
        """
        existing = self.session.get(GlobalFile, global_file_in.hash_id)
        if existing is not None:
            return existing

        try:
            with self.session.begin_nested():
                self.session.add(_global_file_from_create(global_file_in))
        except IntegrityError:
            # Lost an insert race for the same hash
            logger.debug("Global file %s inserted concurrently", global_file_in.hash_id)
        self.session.commit()

        global_file = self.session.get(GlobalFile, global_file_in.hash_id)
        logger.info("Registered global file %s", global_file_in.hash_id)
        return global_file

    def check_hash(self, hash_id: str) -> HashCheckResult:
        """Report whether a blob with this hash is already stored"""
        global_file = self.session.get(GlobalFile, hash_id)
        if global_file is None:
            return HashCheckResult(exists=False)

        return HashCheckResult(
            exists=True,
            mime_type=global_file.mime_type,
            size=global_file.size,
            url=global_file.url,
            file_metadata=global_file.file_metadata,
        )

    def update(self, file_id: str, file_update: FileRecordUpdate) -> FileRecord | None:
        """
        Update metadata on one of the user's records.
        Returns None, without raising, when the record is not the user's.
        Fields sent as null are left unchanged.
        """
        record = self.find_by_id(file_id)
        if record is None:
            logger.debug("Skipping update of missing file %s", file_id)
            return None

        changes = file_update.model_dump(exclude_unset=True, exclude_none=True)
        for field, value in changes.items():
            setattr(record, field, value)
        record.updated_at = utcnow()

        try:
            self.session.add(record)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(record)
        return record

    # ------------------------------------------------------------------
    # Delete path
    # ------------------------------------------------------------------

    def delete(self, file_id: str) -> None:
        """Delete one record; unknown ids are a no-op"""
        self._remove_records(FileRecord.id == file_id)

    def delete_many(self, file_ids: list[str]) -> int:
        """Delete several records at once, returning how many were removed"""
        if not file_ids:
            return 0
        return self._remove_records(col(FileRecord.id).in_(file_ids))

    def clear(self) -> int:
        """Delete every record the user owns"""
        return self._remove_records()

    def _remove_records(self, *conditions) -> int:
        """
        Delete the user's records matching conditions and sweep the global
        files they leave unreferenced, all in one transaction.

        The global file rows are locked before the records go so that two
        transactions deleting the last two references to a hash serialize:
        the later one sees zero references and removes the entry, and a
        repeated removal finds nothing to delete.
        """
        rows = self.session.exec(
            select(FileRecord.id, FileRecord.file_hash)
            .where(FileRecord.user_id == self.user_id, *conditions)
        ).all()
        if not rows:
            return 0

        file_ids = [file_id for file_id, _ in rows]
        hashes = sorted({file_hash for _, file_hash in rows if file_hash})

        try:
            if hashes:
                self.session.exec(
                    select(GlobalFile.hash_id)
                    .where(col(GlobalFile.hash_id).in_(hashes))
                    .with_for_update()
                ).all()

            self.session.exec(
                delete(KnowledgeBaseFile)
                .where(col(KnowledgeBaseFile.file_id).in_(file_ids))
            )
            self.session.exec(
                delete(FileRecord)
                .where(col(FileRecord.id).in_(file_ids))
            )

            if hashes:
                self._sweep_orphaned_global_files(hashes)

            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

        logger.info("Deleted %d file(s) for user %s", len(file_ids), self.user_id)
        return len(file_ids)

    def _sweep_orphaned_global_files(self, hashes: list[str]) -> None:
        """
        Remove global files among hashes that no record references anymore.
        Runs inside the caller's transaction.
        """
        if is_global_file_removal_disabled():
            logger.info(
                "DISABLE_REMOVE_GLOBAL_FILE is set, keeping global files %s",
                ", ".join(hashes)
            )
            return

        still_referenced = (
            select(FileRecord.id)
            .where(FileRecord.file_hash == GlobalFile.hash_id)
            .correlate(GlobalFile)
            .exists()
        )
        result = self.session.exec(
            delete(GlobalFile)
            .where(col(GlobalFile.hash_id).in_(hashes), ~still_referenced)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("Removed %d orphaned global file(s)", result.rowcount)

    # ------------------------------------------------------------------
    # Query engine
    # ------------------------------------------------------------------

    def query(self, file_query: FileQuery | None = None) -> list[FileRecord]:
        """
        List the user's records with optional text, category and knowledge
        base filters. Unknown sort fields fall back to newest first.
        """
        file_query = file_query or FileQuery()
        statement = select(FileRecord).where(FileRecord.user_id == self.user_id)

        if file_query.q:
            statement = statement.where(
                col(FileRecord.name).icontains(file_query.q, autoescape=True)
            )

        if file_query.category and file_query.category != FileCategory.ALL:
            patterns = CATEGORY_MIME_PATTERNS[file_query.category]
            statement = statement.where(
                or_(*[col(FileRecord.mime_type).ilike(pattern) for pattern in patterns])
            )

        if file_query.knowledge_base_id:
            statement = statement.join(
                KnowledgeBaseFile, KnowledgeBaseFile.file_id == FileRecord.id
            ).where(KnowledgeBaseFile.knowledge_base_id == file_query.knowledge_base_id)
        elif file_query.show_files_in_knowledge_base is False:
            in_any_knowledge_base = (
                select(KnowledgeBaseFile.file_id)
                .where(KnowledgeBaseFile.file_id == FileRecord.id)
                .correlate(FileRecord)
                .exists()
            )
            statement = statement.where(~in_any_knowledge_base)

        statement = statement.order_by(
            _order_by(file_query.sorter, file_query.sort_type)
        )
        return list(self.session.exec(statement).all())

    def find_by_id(self, file_id: str) -> FileRecord | None:
        """Return the user's record with this id, or None"""
        return self.session.exec(
            select(FileRecord)
            .where(FileRecord.id == file_id, FileRecord.user_id == self.user_id)
        ).first()

    def find_by_ids(self, file_ids: list[str]) -> list[FileRecord]:
        if not file_ids:
            return []
        return list(self.session.exec(
            select(FileRecord)
            .where(col(FileRecord.id).in_(file_ids), FileRecord.user_id == self.user_id)
        ).all())

    def find_by_names(self, names: list[str]) -> list[FileRecord]:
        if not names:
            return []
        return list(self.session.exec(
            select(FileRecord)
            .where(col(FileRecord.name).in_(names), FileRecord.user_id == self.user_id)
        ).all())

    def count_files_by_hash(self, hash_id: str) -> int:
        """Number of records, across all users, pointing at hash_id"""
        return int(self.session.exec(
            select(func.count())
            .select_from(FileRecord)
            .where(FileRecord.file_hash == hash_id)
        ).one())

    def count_usage(self) -> int:
        """Sum of record sizes for the user; shared blobs count once per record"""
        return int(self.session.exec(
            select(func.coalesce(func.sum(FileRecord.size), 0))
            .where(FileRecord.user_id == self.user_id)
        ).one())


def _global_file_from_create(
    global_file_in: GlobalFileCreate, hash_id: str | None = None
) -> GlobalFile:
    return GlobalFile(
        hash_id=hash_id or global_file_in.hash_id,
        mime_type=global_file_in.mime_type,
        size=global_file_in.size,
        url=global_file_in.url,
        file_metadata=global_file_in.file_metadata,
    )


def _order_by(sorter: str | None, sort_type: SortType | None):
    sorter = SORTER_ALIASES.get(sorter, sorter)
    if sorter not in SORTABLE_FIELDS:
        return col(FileRecord.created_at).desc()

    column = col(getattr(FileRecord, sorter))
    if sort_type == SortType.ASC:
        return column.asc()
    return column.desc()
